"""
Repositories for the collection side of the store: bins, collection events,
and planned route stops.

These tables are written by external workflows (collection confirmation,
route planning). The engine only reads them; the insert/upsert methods exist
for the CSV importer and for tests.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from datetime import datetime
from typing import Optional

from bin_forecaster.db.repositories.base import BaseRepository
from bin_forecaster.models.collection import CollectionBin, CollectionEvent, RouteStop
from bin_forecaster.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class CollectionBinRepository(BaseRepository):
    """Read/write access to ``collection_bins``."""

    def upsert(self, bin_: CollectionBin) -> None:
        """Insert a bin or update its region/status if it already exists."""
        self.execute(
            """
            INSERT INTO collection_bins (bin_id, region, bin_status)
            VALUES (?, ?, ?)
            ON CONFLICT(bin_id) DO UPDATE SET
                region     = excluded.region,
                bin_status = excluded.bin_status;
            """,
            (bin_.bin_id, bin_.region, bin_.bin_status),
        )

    def get_all(self) -> dict[int, CollectionBin]:
        """Return every registered bin keyed by ``bin_id``."""
        rows = self.fetchall("SELECT * FROM collection_bins ORDER BY bin_id;")
        return {r["bin_id"]: _row_to_bin(r) for r in rows}

    def get_by_id(self, bin_id: int) -> Optional[CollectionBin]:
        row = self.fetchone("SELECT * FROM collection_bins WHERE bin_id = ?;", (bin_id,))
        return _row_to_bin(row) if row else None


class CollectionEventRepository(BaseRepository):
    """Read/write access to ``collection_events``."""

    def insert(self, event: CollectionEvent) -> int:
        """Insert a collection event and return its ``collection_id``."""
        self.execute(
            """
            INSERT INTO collection_events (bin_id, collected_at, fill_level)
            VALUES (?, ?, ?);
            """,
            (
                event.bin_id,
                to_db_timestamp(event.collected_at) if event.collected_at else None,
                event.fill_level,
            ),
        )
        return self.last_insert_rowid()

    def get_history_by_bin(self) -> dict[int, list[CollectionEvent]]:
        """Return every bin's collection history, newest first.

        Events without a timestamp sort after all timestamped events, so they
        only reach the head of a history when fewer than two timestamped
        events exist.

        Returns:
            Mapping of ``bin_id`` → list of ``CollectionEvent`` (most recent first).
        """
        rows = self.fetchall(
            """
            SELECT * FROM collection_events
            ORDER BY bin_id,
                     collected_at IS NULL,
                     collected_at DESC,
                     collection_id DESC;
            """
        )
        history: dict[int, list[CollectionEvent]] = defaultdict(list)
        for r in rows:
            history[r["bin_id"]].append(_row_to_event(r))
        return dict(history)

    def get_for_bin(self, bin_id: int) -> list[CollectionEvent]:
        """Return one bin's collection history, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM collection_events
            WHERE bin_id = ?
            ORDER BY collected_at IS NULL, collected_at DESC, collection_id DESC;
            """,
            (bin_id,),
        )
        return [_row_to_event(r) for r in rows]

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) AS n FROM collection_events;")
        return int(row["n"]) if row else 0


class RouteStopRepository(BaseRepository):
    """Read/write access to ``route_stops``."""

    def insert(self, stop: RouteStop) -> int:
        """Insert a planned route stop and return its ``stop_id``."""
        self.execute(
            """
            INSERT INTO route_stops (route_id, bin_id, planned_collection_at)
            VALUES (?, ?, ?);
            """,
            (stop.route_id, stop.bin_id, to_db_timestamp(stop.planned_collection_at)),
        )
        return self.last_insert_rowid()

    def get_next_stop_by_bin(self, from_time: datetime) -> dict[int, RouteStop]:
        """Return each bin's earliest planned stop at or after ``from_time``.

        Args:
            from_time: Lower bound (inclusive) on ``planned_collection_at``.

        Returns:
            Mapping of ``bin_id`` → earliest upcoming ``RouteStop``.
        """
        rows = self.fetchall(
            """
            SELECT * FROM route_stops
            WHERE planned_collection_at >= ?
            ORDER BY bin_id, planned_collection_at ASC, stop_id ASC;
            """,
            (to_db_timestamp(from_time),),
        )
        next_stop: dict[int, RouteStop] = {}
        for r in rows:
            next_stop.setdefault(r["bin_id"], _row_to_stop(r))
        return next_stop


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_bin(row: sqlite3.Row) -> CollectionBin:
    return CollectionBin(
        bin_id=row["bin_id"],
        region=row["region"],
        bin_status=row["bin_status"],
    )


def _row_to_event(row: sqlite3.Row) -> CollectionEvent:
    return CollectionEvent(
        collection_id=row["collection_id"],
        bin_id=row["bin_id"],
        collected_at=from_db_timestamp(row["collected_at"]),
        fill_level=row["fill_level"],
    )


def _row_to_stop(row: sqlite3.Row) -> RouteStop:
    return RouteStop(
        stop_id=row["stop_id"],
        route_id=row["route_id"],
        bin_id=row["bin_id"],
        planned_collection_at=from_db_timestamp(row["planned_collection_at"]),
    )
