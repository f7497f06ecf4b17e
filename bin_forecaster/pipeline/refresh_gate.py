"""
Refresh decision gate — the idempotency boundary of the refresh pass.

A bin gets a new prediction only when a new cycle has started since its last
prediction. Because the gate compares against the latest collection
timestamp, running the refresh twice within one cycle writes nothing the
second time.
"""

from __future__ import annotations

from typing import Optional

from bin_forecaster.models.collection import CollectionEvent
from bin_forecaster.models.prediction import FillLevelPrediction
from bin_forecaster.utils.time_utils import ensure_utc


def needs_refresh(
    latest_prediction: Optional[FillLevelPrediction],
    latest_event: CollectionEvent,
) -> bool:
    """Return ``True`` when the bin's prediction is missing or predates its latest cycle.

    Rules, in order:
      1. No prior prediction                         → refresh.
      2. Latest event has no collection timestamp    → refresh (the feature
         extractor will then skip the bin).
      3. Prediction generated strictly before the latest collection → refresh.
      4. Otherwise (generated at or after the collection) → no refresh.

    Args:
        latest_prediction: Most recent stored prediction for the bin, or ``None``.
        latest_event:      Most recent collection event for the bin.
    """
    if latest_prediction is None:
        return True
    if latest_event.collected_at is None:
        return True
    return ensure_utc(latest_prediction.generated_at) < ensure_utc(latest_event.collected_at)
