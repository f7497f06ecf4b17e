"""
Repositories for fill-level predictions and pipeline run metadata.

``fill_level_predictions`` is append-only: there is no update or delete path.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Optional

from bin_forecaster.db.repositories.base import BaseRepository
from bin_forecaster.models.meta import RunMetadata
from bin_forecaster.models.prediction import FillLevelPrediction
from bin_forecaster.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class FillLevelPredictionRepository(BaseRepository):
    """Append/read access to ``fill_level_predictions``."""

    def insert(self, prediction: FillLevelPrediction) -> int:
        """Append a prediction row and return its ``prediction_id``.

        Args:
            prediction: The ``FillLevelPrediction`` to persist.

        Returns:
            The newly assigned ``prediction_id``.
        """
        self.execute(
            """
            INSERT INTO fill_level_predictions (
                bin_id, predicted_avg_daily_growth, generated_at,
                model_version, run_id
            ) VALUES (?, ?, ?, ?, ?);
            """,
            (
                prediction.bin_id,
                prediction.predicted_avg_daily_growth,
                to_db_timestamp(prediction.generated_at),
                prediction.model_version,
                prediction.run_id,
            ),
        )
        return self.last_insert_rowid()

    def get_latest_by_bin(self) -> dict[int, FillLevelPrediction]:
        """Return the most recent prediction for every bin that has one.

        Ties on ``generated_at`` resolve to the highest ``prediction_id``.
        """
        rows = self.fetchall(
            """
            SELECT p.* FROM fill_level_predictions p
            WHERE p.prediction_id = (
                SELECT p2.prediction_id FROM fill_level_predictions p2
                WHERE p2.bin_id = p.bin_id
                ORDER BY p2.generated_at DESC, p2.prediction_id DESC
                LIMIT 1
            );
            """
        )
        return {r["bin_id"]: _row_to_prediction(r) for r in rows}

    def get_for_bin(self, bin_id: int) -> list[FillLevelPrediction]:
        """Return all predictions for one bin, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM fill_level_predictions
            WHERE bin_id = ?
            ORDER BY generated_at DESC, prediction_id DESC;
            """,
            (bin_id,),
        )
        return [_row_to_prediction(r) for r in rows]

    def count(self, bin_id: Optional[int] = None) -> int:
        """Count prediction rows, optionally for a single bin."""
        if bin_id is None:
            row = self.fetchone("SELECT COUNT(*) AS n FROM fill_level_predictions;")
        else:
            row = self.fetchone(
                "SELECT COUNT(*) AS n FROM fill_level_predictions WHERE bin_id = ?;",
                (bin_id,),
            )
        return int(row["n"]) if row else 0


class RunMetadataRepository(BaseRepository):
    """Read/write access to ``run_metadata``."""

    def insert_run(self, run: RunMetadata) -> int:
        """Insert a new run record and return its ``run_id``."""
        self.execute(
            """
            INSERT INTO run_metadata (
                run_slug, pipeline_stage, status, config_snapshot,
                rows_processed, error_message, started_at, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.run_slug,
                run.pipeline_stage,
                run.status,
                json.dumps(run.config_snapshot, default=str),
                run.rows_processed,
                run.error_message,
                to_db_timestamp(run.started_at),
                to_db_timestamp(run.finished_at) if run.finished_at else None,
            ),
        )
        return self.last_insert_rowid()

    def update_run(self, run: RunMetadata) -> None:
        """Update the mutable fields of an existing run record.

        Raises:
            ValueError: If ``run.run_id`` is ``None``.
        """
        if run.run_id is None:
            raise ValueError("Cannot update RunMetadata without a run_id.")
        self.execute(
            """
            UPDATE run_metadata SET
                status         = ?,
                rows_processed = ?,
                error_message  = ?,
                finished_at    = ?
            WHERE run_id = ?;
            """,
            (
                run.status,
                run.rows_processed,
                run.error_message,
                to_db_timestamp(run.finished_at) if run.finished_at else None,
                run.run_id,
            ),
        )

    def get_run_by_slug(self, run_slug: str) -> Optional[RunMetadata]:
        row = self.fetchone(
            "SELECT * FROM run_metadata WHERE run_slug = ?;", (run_slug,)
        )
        return _row_to_run(row) if row else None

    def get_recent_runs(self, limit: int = 20) -> list[RunMetadata]:
        """Fetch recent run records, most recent first."""
        rows = self.fetchall(
            "SELECT * FROM run_metadata ORDER BY started_at DESC LIMIT ?;",
            (limit,),
        )
        return [_row_to_run(r) for r in rows]


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_prediction(row: sqlite3.Row) -> FillLevelPrediction:
    return FillLevelPrediction(
        prediction_id=row["prediction_id"],
        bin_id=row["bin_id"],
        predicted_avg_daily_growth=row["predicted_avg_daily_growth"],
        generated_at=from_db_timestamp(row["generated_at"]),
        model_version=row["model_version"],
        run_id=row["run_id"],
    )


def _row_to_run(row: sqlite3.Row) -> RunMetadata:
    return RunMetadata(
        run_id=row["run_id"],
        run_slug=row["run_slug"],
        pipeline_stage=row["pipeline_stage"],
        status=row["status"],
        config_snapshot=json.loads(row["config_snapshot"]),
        rows_processed=row["rows_processed"],
        error_message=row["error_message"],
        started_at=from_db_timestamp(row["started_at"]),
        finished_at=from_db_timestamp(row["finished_at"]),
    )
