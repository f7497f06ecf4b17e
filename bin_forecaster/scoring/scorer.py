"""
Priority scoring: converts a bin's latest growth prediction plus the time
since its last collection into an estimated current fill and the number of
days until it crosses the collection threshold.

Formula
-------
    days_elapsed   = max(as_of - last_collected_at, 0)            fractional days
    baseline       = last observed fill   (FillBaseline.LAST_OBSERVED, default)
                   | 0                    (FillBaseline.EMPTY)
    estimated_fill = clamp(baseline + growth * days_elapsed, 0, 100)

    estimated_fill >= threshold   → days_to_threshold = 0
    growth <= 0                   → days_to_threshold = None  (undetermined)
    otherwise                     → ceil((threshold - estimated_fill) / growth)

An undetermined result is a normal outcome, not an error: a bin whose
predicted growth is flat or negative never reaches the threshold.

Risk bands (configurable, ``ScoringConfig``)
--------------------------------------------
    HIGH   : days_to_threshold <= high_risk_max_days   (default 1)
    MEDIUM : days_to_threshold <= medium_risk_max_days (default 3)
    LOW    : everything else, including undetermined
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from bin_forecaster.utils.time_utils import days_elapsed_since

DEFAULT_THRESHOLD_PCT = 80.0
_DAYS_PRECISION = 9


class FillBaseline(str, Enum):
    """Where the fill projection starts after a collection."""

    LAST_OBSERVED = "last_observed"  # fill level recorded at the last collection
    EMPTY         = "empty"          # bin assumed emptied to 0%


class ForecastStatus(str, Enum):
    REACHED      = "reached"       # already at or above threshold
    PROJECTED    = "projected"     # crosses threshold in >= 1 day
    UNDETERMINED = "undetermined"  # growth <= 0 below threshold


class RiskLevel(str, Enum):
    HIGH   = "high"
    MEDIUM = "medium"
    LOW    = "low"


@dataclass(frozen=True)
class PriorityScore:
    """Scoring outcome for one bin.

    Attributes:
        estimated_fill:    Projected current fill, clamped to [0, 100].
        days_to_threshold: Whole days until the threshold is reached; ``0`` if
                           already reached, ``None`` if undetermined.
        days_elapsed:      Fractional days since the last collection.
        status:            ``ForecastStatus`` of the projection.
    """

    estimated_fill:    float
    days_to_threshold: Optional[int]
    days_elapsed:      float
    status:            ForecastStatus

    @property
    def is_undetermined(self) -> bool:
        return self.status is ForecastStatus.UNDETERMINED


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def score_bin(
    growth: float,
    last_collected_at: datetime,
    last_fill_pct: float,
    as_of: datetime,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
    baseline: FillBaseline = FillBaseline.LAST_OBSERVED,
) -> PriorityScore:
    """Score one bin.

    Args:
        growth:            Predicted average daily growth (percentage points/day).
        last_collected_at: Timestamp of the most recent collection.
        last_fill_pct:     Fill % observed at that collection.
        as_of:             Evaluation time.
        threshold_pct:     Fill % at which the bin needs collecting.
        baseline:          Projection starting point.

    Returns:
        ``PriorityScore``; never raises for growth <= 0.
    """
    days_elapsed = days_elapsed_since(last_collected_at, as_of)
    start = last_fill_pct if FillBaseline(baseline) is FillBaseline.LAST_OBSERVED else 0.0
    estimated_fill = _clamp(start + growth * days_elapsed, 0.0, 100.0)

    if estimated_fill >= threshold_pct:
        return PriorityScore(estimated_fill, 0, days_elapsed, ForecastStatus.REACHED)

    if growth <= 0:
        return PriorityScore(estimated_fill, None, days_elapsed, ForecastStatus.UNDETERMINED)

    # Round off float noise so 11.000000000000002 days stays 11
    days = math.ceil(round((threshold_pct - estimated_fill) / growth, _DAYS_PRECISION))
    return PriorityScore(estimated_fill, max(days, 1), days_elapsed, ForecastStatus.PROJECTED)


def classify_risk(
    days_to_threshold: Optional[int],
    high_max_days: int = 1,
    medium_max_days: int = 3,
) -> RiskLevel:
    """Map days-to-threshold onto a risk band (undetermined → LOW)."""
    if days_to_threshold is None:
        return RiskLevel.LOW
    if days_to_threshold <= high_max_days:
        return RiskLevel.HIGH
    if days_to_threshold <= medium_max_days:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
