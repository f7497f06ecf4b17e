"""
History store accessor — one read of everything a refresh pass or a priority
query needs.

``load_history_snapshot(conn)`` returns, per bin, the collection history
(newest first) and the single latest stored prediction. It has no side
effects. Bins with zero or one event are included as-is; deciding that they
cannot be refreshed is the feature extractor's job.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

from bin_forecaster.db.repositories.collection_repo import CollectionEventRepository
from bin_forecaster.db.repositories.prediction_repo import FillLevelPredictionRepository
from bin_forecaster.models.collection import CollectionEvent
from bin_forecaster.models.prediction import FillLevelPrediction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistorySnapshot:
    """Point-in-time view of collection history and latest predictions.

    Attributes:
        events_by_bin:            ``bin_id`` → events, most recent first.
        latest_prediction_by_bin: ``bin_id`` → latest prediction (absent if none).
    """

    events_by_bin:            dict[int, list[CollectionEvent]] = field(default_factory=dict)
    latest_prediction_by_bin: dict[int, FillLevelPrediction]   = field(default_factory=dict)

    @property
    def bin_ids(self) -> list[int]:
        """All bins with at least one collection event, ascending."""
        return sorted(self.events_by_bin)

    def latest_event(self, bin_id: int) -> Optional[CollectionEvent]:
        events = self.events_by_bin.get(bin_id)
        return events[0] if events else None

    def latest_prediction(self, bin_id: int) -> Optional[FillLevelPrediction]:
        return self.latest_prediction_by_bin.get(bin_id)


def load_history_snapshot(conn: sqlite3.Connection) -> HistorySnapshot:
    """Read collection histories and latest predictions for all bins.

    Args:
        conn: Open SQLite connection with the schema applied.

    Returns:
        ``HistorySnapshot`` for every bin that has collection events or
        predictions.
    """
    events_by_bin = CollectionEventRepository(conn).get_history_by_bin()
    latest_by_bin = FillLevelPredictionRepository(conn).get_latest_by_bin()
    logger.debug(
        "History snapshot: %d bin(s) with events, %d with predictions.",
        len(events_by_bin), len(latest_by_bin),
    )
    return HistorySnapshot(
        events_by_bin=events_by_bin,
        latest_prediction_by_bin=latest_by_bin,
    )
