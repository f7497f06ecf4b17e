"""Tests for the batching prediction writer."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

import pytest

from bin_forecaster.db.repositories.prediction_repo import FillLevelPredictionRepository
from bin_forecaster.errors import PersistenceFailure, StoreUnavailable
from bin_forecaster.pipeline.writer import PredictionWriter

T0 = datetime(2025, 3, 14, 12, 0, 0, tzinfo=timezone.utc)


def _reject_bin(conn: sqlite3.Connection, bin_id: int) -> None:
    conn.execute(
        f"""
        CREATE TRIGGER reject_bin_{bin_id}
        BEFORE INSERT ON fill_level_predictions
        WHEN NEW.bin_id = {bin_id}
        BEGIN
            SELECT RAISE(ABORT, 'rejected for test');
        END;
        """
    )
    conn.commit()


class _CommitFailingConnection:
    """Delegates to a real connection but fails on commit."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def __getattr__(self, name):
        return getattr(self._conn, name)

    def commit(self) -> None:
        raise sqlite3.OperationalError("database is locked")


class TestPredictionWriter:
    def test_append_and_commit(self, in_memory_db):
        writer = PredictionWriter(in_memory_db)
        stored = writer.append(12, 5.0, "v1", generated_at=T0)
        assert stored.prediction_id is not None
        assert stored.generated_at == T0

        assert writer.commit() == 1
        rows = FillLevelPredictionRepository(in_memory_db).get_for_bin(12)
        assert [r.predicted_avg_daily_growth for r in rows] == [5.0]

    def test_generated_at_defaults_to_now(self, in_memory_db):
        before = datetime.now(tz=timezone.utc)
        stored = PredictionWriter(in_memory_db).append(1, 1.0, "v1")
        assert stored.generated_at >= before

    def test_failed_bin_isolated(self, in_memory_db):
        _reject_bin(in_memory_db, 7)
        writer = PredictionWriter(in_memory_db)
        writer.append(6, 1.0, "v1")
        with pytest.raises(PersistenceFailure) as exc_info:
            writer.append(7, 1.0, "v1")
        writer.append(8, 1.0, "v1")

        assert exc_info.value.bin_id == 7
        assert writer.appended_bin_ids == [6, 8]
        assert writer.commit() == 2

        repo = FillLevelPredictionRepository(in_memory_db)
        assert repo.count(bin_id=7) == 0
        assert repo.count() == 2

    def test_non_finite_growth_rejected_before_write(self, in_memory_db):
        writer = PredictionWriter(in_memory_db)
        with pytest.raises(PersistenceFailure):
            writer.append(1, float("nan"), "v1")
        assert writer.appended_count == 0

    def test_run_id_tagged(self, in_memory_db):
        in_memory_db.execute(
            "INSERT INTO run_metadata (run_slug, pipeline_stage, config_snapshot, started_at) "
            "VALUES ('r1', 'refresh_predictions', '{}', '2025-03-14T12:00:00.000000+00:00');"
        )
        run_id = in_memory_db.execute("SELECT run_id FROM run_metadata;").fetchone()["run_id"]
        writer = PredictionWriter(in_memory_db, run_id=run_id)
        writer.append(1, 1.0, "v1")
        writer.commit()
        assert FillLevelPredictionRepository(in_memory_db).get_for_bin(1)[0].run_id == run_id

    def test_commit_failure_escalates(self, in_memory_db):
        writer = PredictionWriter(_CommitFailingConnection(in_memory_db))  # type: ignore[arg-type]
        writer.append(1, 1.0, "v1")
        with pytest.raises(StoreUnavailable):
            writer.commit()
        assert writer.appended_count == 0
