"""
Cycle feature extraction from collection history.

A *cycle* is the interval between two consecutive collections of a bin. The
prediction model is fed three features describing the cycle that just ended:

  cycle_duration_days      ceil(newest.collected_at - previous.collected_at) in
                           whole days; any sub-day remainder rounds up, so
                           distinct events always give a positive integer.
  cycle_start_month        Calendar month (1–12, UTC) of the newest event.
  fill_at_last_collection  Fill percentage observed at the newest event.

Only the two most recent events are used. Older history is ignored.

Skip conditions (raised, converted to a ``skipped`` outcome by the caller):
  InsufficientHistory     fewer than two events, or both events share a timestamp
  StaleTimestampMissing   either of the two most recent events lacks a timestamp
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from bin_forecaster.errors import InsufficientHistory, StaleTimestampMissing
from bin_forecaster.models.collection import CollectionEvent
from bin_forecaster.utils.time_utils import ceil_days_between


@dataclass(frozen=True)
class CycleFeatures:
    """Model input features for one bin.

    Attributes:
        bin_id:                  Bin the features describe.
        cycle_duration_days:     Positive whole-day length of the last cycle.
        cycle_start_month:       Month (1–12) of the most recent collection.
        fill_at_last_collection: Fill % observed at the most recent collection.
        last_collected_at:       Timestamp of the most recent collection.
    """

    bin_id:                  int
    cycle_duration_days:     int
    cycle_start_month:       int
    fill_at_last_collection: int
    last_collected_at:       datetime


def extract_cycle_features(events: Sequence[CollectionEvent]) -> CycleFeatures:
    """Derive ``CycleFeatures`` from a bin's history.

    Args:
        events: The bin's collection events, most recent first.

    Returns:
        ``CycleFeatures`` built from ``events[0]`` and ``events[1]``.

    Raises:
        InsufficientHistory: Fewer than two events, or a zero-length cycle.
        StaleTimestampMissing: Either of the two newest events has no timestamp.
    """
    if len(events) < 2:
        bin_id = events[0].bin_id if events else None
        raise InsufficientHistory(
            f"Bin {bin_id} has {len(events)} collection event(s); need at least 2.",
            bin_id=bin_id,
        )

    newest, previous = events[0], events[1]
    if newest.collected_at is None or previous.collected_at is None:
        raise StaleTimestampMissing(
            f"Bin {newest.bin_id}: one of the two most recent collection events "
            "has no timestamp.",
            bin_id=newest.bin_id,
        )

    duration = ceil_days_between(previous.collected_at, newest.collected_at)
    if duration == 0:
        raise InsufficientHistory(
            f"Bin {newest.bin_id}: two most recent collections share a timestamp "
            f"({newest.collected_at.isoformat()}); no cycle to describe.",
            bin_id=newest.bin_id,
        )

    return CycleFeatures(
        bin_id=newest.bin_id,
        cycle_duration_days=duration,
        cycle_start_month=newest.collected_at.month,
        fill_at_last_collection=newest.fill_level,
        last_collected_at=newest.collected_at,
    )
