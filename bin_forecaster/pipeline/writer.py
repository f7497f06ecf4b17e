"""
Prediction writer — appends refreshed predictions for one refresh pass.

All appends in a pass share one outer transaction. Each bin's insert runs in
its own ``SAVEPOINT``, so a failed insert undoes only that bin and the bin is
reported as failed rather than refreshed. ``commit()`` makes the batch
durable; if the commit itself fails nothing from the pass is durable and
``StoreUnavailable`` is raised to the caller.

``appended_count`` only counts bins whose insert succeeded; it becomes the
pass result once ``commit()`` returns.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from bin_forecaster.db.repositories.prediction_repo import FillLevelPredictionRepository
from bin_forecaster.errors import PersistenceFailure, StoreUnavailable
from bin_forecaster.models.prediction import FillLevelPrediction
from bin_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PredictionWriter:
    """Batching, per-bin-isolated writer for ``fill_level_predictions``.

    Args:
        conn:   Open connection; the writer never closes it.
        run_id: ``run_metadata.run_id`` to tag rows with, if any.
    """

    def __init__(self, conn: sqlite3.Connection, run_id: Optional[int] = None) -> None:
        self._repo = FillLevelPredictionRepository(conn)
        self._conn = conn
        self._run_id = run_id
        self._appended: list[int] = []

    @property
    def appended_count(self) -> int:
        return len(self._appended)

    @property
    def appended_bin_ids(self) -> list[int]:
        return list(self._appended)

    def append(
        self,
        bin_id: int,
        avg_daily_growth: float,
        model_version: str,
        generated_at: Optional[datetime] = None,
    ) -> FillLevelPrediction:
        """Append one prediction row for ``bin_id``.

        Args:
            bin_id:           Bin the prediction is for.
            avg_daily_growth: Model output.
            model_version:    Model version tag.
            generated_at:     Generation time; defaults to now (UTC).

        Returns:
            The stored ``FillLevelPrediction`` (with ``prediction_id``).

        Raises:
            PersistenceFailure: The insert failed; the bin's savepoint was
                rolled back and earlier appends are intact.
        """
        try:
            prediction = FillLevelPrediction(
                bin_id=bin_id,
                predicted_avg_daily_growth=avg_daily_growth,
                generated_at=generated_at or utcnow(),
                model_version=model_version,
                run_id=self._run_id,
            )
        except ValueError as exc:
            raise PersistenceFailure(
                f"Bin {bin_id}: prediction rejected before write: {exc}", bin_id=bin_id
            ) from exc

        try:
            with self._repo.savepoint(f"bin_{bin_id}"):
                prediction_id = self._repo.insert(prediction)
        except sqlite3.Error as exc:
            raise PersistenceFailure(
                f"Bin {bin_id}: failed to append prediction: {exc}", bin_id=bin_id
            ) from exc

        self._appended.append(bin_id)
        return prediction.model_copy(update={"prediction_id": prediction_id})

    def commit(self) -> int:
        """Commit all appended rows and return the number of bins persisted.

        Raises:
            StoreUnavailable: The commit failed; no row of this pass is durable.
        """
        try:
            self._conn.commit()
        except sqlite3.Error as exc:
            lost = self.appended_count
            self._appended.clear()
            raise StoreUnavailable(
                f"Commit of {lost} prediction(s) failed: {exc}"
            ) from exc
        logger.debug("Committed %d prediction(s).", self.appended_count)
        return self.appended_count
