"""
Priority list: joins collection history, latest predictions, bin registry and
planned route stops, scores each bin, and exposes filter / sort / summary
helpers over the result.

Inclusion rules (per bin with collection history):
  - bins registered as ``inactive`` are excluded;
  - bins with no timestamped collection are excluded;
  - bins with no stored prediction are excluded and counted as missing;
  - unregistered bins are ranked with ``region=None``.

A prediction older than the latest collection is still scored but the row is
flagged ``is_stale`` (a new cycle has started and the next refresh will
replace it).

Planning status:
  ``scheduled`` when the bin's next planned stop falls on or after the
  evaluation day and after the last collection, else ``not_scheduled``.
  ``auto_selected`` = high risk and not scheduled.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Iterable, Optional

from bin_forecaster.config import ScoringConfig
from bin_forecaster.db.history import HistorySnapshot, load_history_snapshot
from bin_forecaster.db.repositories.collection_repo import (
    CollectionBinRepository,
    RouteStopRepository,
)
from bin_forecaster.models.collection import CollectionBin, RouteStop
from bin_forecaster.pipeline.refresh_gate import needs_refresh
from bin_forecaster.scoring.scorer import (
    FillBaseline,
    ForecastStatus,
    RiskLevel,
    classify_risk,
    score_bin,
)
from bin_forecaster.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class PlanningStatus(str, Enum):
    SCHEDULED     = "scheduled"
    NOT_SCHEDULED = "not_scheduled"


class SortKey(str, Enum):
    DAYS_TO_THRESHOLD = "days_to_threshold"
    ESTIMATED_FILL    = "estimated_fill"
    GROWTH            = "growth"


@dataclass(frozen=True)
class BinPriority:
    """One ranked bin. Derived on every query; never persisted.

    Attributes:
        bin_id:                  Bin identifier.
        region:                  Region name, ``None`` if unregistered/unassigned.
        last_collected_at:       Most recent collection timestamp.
        last_fill_pct:           Fill % observed at that collection.
        predicted_growth:        Latest predicted average daily growth.
        model_version:           Version tag of that prediction.
        prediction_generated_at: When that prediction was made.
        estimated_fill:          Projected current fill, [0, 100].
        days_to_threshold:       Whole days to threshold; ``None`` = undetermined.
        forecast_status:         reached / projected / undetermined.
        risk_level:              high / medium / low.
        is_stale:                Prediction predates the latest collection.
        planning_status:         scheduled / not_scheduled.
        next_planned_at:         Next planned stop time when scheduled.
        route_id:                Route of that stop when scheduled.
        auto_selected:           High risk and not scheduled.
    """

    bin_id:                  int
    region:                  Optional[str]
    last_collected_at:       datetime
    last_fill_pct:           int
    predicted_growth:        float
    model_version:           str
    prediction_generated_at: datetime
    estimated_fill:          float
    days_to_threshold:       Optional[int]
    forecast_status:         ForecastStatus
    risk_level:              RiskLevel
    is_stale:                bool
    planning_status:         PlanningStatus
    next_planned_at:         Optional[datetime]
    route_id:                Optional[int]
    auto_selected:           bool

    def to_dict(self) -> dict:
        """JSON-friendly representation (enums as values, datetimes as ISO)."""
        return {
            "bin_id": self.bin_id,
            "region": self.region,
            "last_collected_at": self.last_collected_at.isoformat(),
            "last_fill_pct": self.last_fill_pct,
            "predicted_growth": self.predicted_growth,
            "model_version": self.model_version,
            "prediction_generated_at": self.prediction_generated_at.isoformat(),
            "estimated_fill": round(self.estimated_fill, 2),
            "days_to_threshold": self.days_to_threshold,
            "forecast_status": self.forecast_status.value,
            "risk_level": self.risk_level.value,
            "is_stale": self.is_stale,
            "planning_status": self.planning_status.value,
            "next_planned_at": self.next_planned_at.isoformat() if self.next_planned_at else None,
            "route_id": self.route_id,
            "auto_selected": self.auto_selected,
        }


@dataclass(frozen=True)
class PrioritySummary:
    """Headline counts over a priority list."""

    total_bins:                 int
    high_priority_bins:         int
    avg_predicted_growth:       float
    new_cycle_detected_count:   int
    missing_prediction_count:   int
    high_risk_unscheduled_count: int


# ── Building ──────────────────────────────────────────────────────────────────

def build_priority_list(
    snapshot: HistorySnapshot,
    as_of: datetime,
    scoring: Optional[ScoringConfig] = None,
    bins: Optional[dict[int, CollectionBin]] = None,
    next_stops: Optional[dict[int, RouteStop]] = None,
) -> list[BinPriority]:
    """Score every rankable bin in ``snapshot``.

    Args:
        snapshot:   History and latest predictions.
        as_of:      Evaluation time.
        scoring:    Threshold, baseline and risk bands (defaults if ``None``).
        bins:       Bin registry keyed by id (region / active status).
        next_stops: Earliest upcoming route stop per bin.

    Returns:
        ``BinPriority`` rows ordered by ``bin_id``. Use ``sort_priorities`` for
        an urgency order.
    """
    scoring = scoring or ScoringConfig()
    bins = bins or {}
    next_stops = next_stops or {}
    as_of = ensure_utc(as_of)
    today = _start_of_day(as_of)
    baseline = FillBaseline(scoring.fill_baseline)

    rows: list[BinPriority] = []
    for bin_id in snapshot.bin_ids:
        registered = bins.get(bin_id)
        if registered is not None and registered.bin_status == "inactive":
            continue

        latest = snapshot.latest_event(bin_id)
        if latest is None or latest.collected_at is None:
            logger.debug("Bin %d: no timestamped collection; not ranked.", bin_id)
            continue

        prediction = snapshot.latest_prediction(bin_id)
        if prediction is None:
            continue

        score = score_bin(
            prediction.predicted_avg_daily_growth,
            latest.collected_at,
            latest.fill_level,
            as_of,
            threshold_pct=scoring.threshold_pct,
            baseline=baseline,
        )
        risk = classify_risk(
            score.days_to_threshold,
            high_max_days=scoring.high_risk_max_days,
            medium_max_days=scoring.medium_risk_max_days,
        )

        stop = next_stops.get(bin_id)
        scheduled = (
            stop is not None
            and stop.planned_collection_at >= today
            and stop.planned_collection_at > latest.collected_at
        )

        rows.append(
            BinPriority(
                bin_id=bin_id,
                region=registered.region if registered else None,
                last_collected_at=latest.collected_at,
                last_fill_pct=latest.fill_level,
                predicted_growth=prediction.predicted_avg_daily_growth,
                model_version=prediction.model_version,
                prediction_generated_at=prediction.generated_at,
                estimated_fill=score.estimated_fill,
                days_to_threshold=score.days_to_threshold,
                forecast_status=score.status,
                risk_level=risk,
                is_stale=needs_refresh(prediction, latest),
                planning_status=(
                    PlanningStatus.SCHEDULED if scheduled else PlanningStatus.NOT_SCHEDULED
                ),
                next_planned_at=stop.planned_collection_at if scheduled else None,
                route_id=stop.route_id if scheduled else None,
                auto_selected=risk is RiskLevel.HIGH and not scheduled,
            )
        )
    return rows


def count_missing_predictions(
    snapshot: HistorySnapshot,
    bins: Optional[dict[int, CollectionBin]] = None,
) -> int:
    """Bins that would be ranked but have no stored prediction."""
    bins = bins or {}
    missing = 0
    for bin_id in snapshot.bin_ids:
        registered = bins.get(bin_id)
        if registered is not None and registered.bin_status == "inactive":
            continue
        latest = snapshot.latest_event(bin_id)
        if latest is None or latest.collected_at is None:
            continue
        if snapshot.latest_prediction(bin_id) is None:
            missing += 1
    return missing


def load_priority_list(
    conn: sqlite3.Connection,
    scoring: Optional[ScoringConfig] = None,
    as_of: Optional[datetime] = None,
) -> list[BinPriority]:
    """Read the store and return scorable bins, most urgent first.

    Args:
        conn:    Open connection with the schema applied.
        scoring: Scoring section of ``AppConfig``.
        as_of:   Evaluation time (defaults to now, UTC).
    """
    priorities, _ = load_priority_report(conn, scoring, as_of)
    return sort_priorities(priorities)


def load_priority_report(
    conn: sqlite3.Connection,
    scoring: Optional[ScoringConfig] = None,
    as_of: Optional[datetime] = None,
) -> tuple[list[BinPriority], PrioritySummary]:
    """Like ``load_priority_list`` but unsorted and paired with its summary.

    Returns:
        ``(priorities, summary)``.
    """
    as_of = ensure_utc(as_of or utcnow())
    snapshot = load_history_snapshot(conn)
    bins = CollectionBinRepository(conn).get_all()
    next_stops = RouteStopRepository(conn).get_next_stop_by_bin(_start_of_day(as_of))

    priorities = build_priority_list(snapshot, as_of, scoring, bins, next_stops)
    summary = summarize_priorities(
        priorities,
        high_max_days=(scoring or ScoringConfig()).high_risk_max_days,
        missing_prediction_count=count_missing_predictions(snapshot, bins),
    )
    logger.info(
        "Priority list: %d bin(s) ranked | high=%d | stale=%d | missing=%d",
        summary.total_bins, summary.high_priority_bins,
        summary.new_cycle_detected_count, summary.missing_prediction_count,
    )
    return priorities, summary


# ── Filter / sort / summarize ─────────────────────────────────────────────────

def filter_priorities(
    priorities: Iterable[BinPriority],
    risk: Optional[RiskLevel | str] = None,
    within_days: Optional[int] = None,
) -> list[BinPriority]:
    """Keep rows matching a risk level and/or due within ``within_days``.

    Undetermined rows never match a ``within_days`` filter.
    """
    risk_level = RiskLevel(risk) if risk is not None else None
    out = []
    for p in priorities:
        if risk_level is not None and p.risk_level is not risk_level:
            continue
        if within_days is not None and (
            p.days_to_threshold is None or p.days_to_threshold > within_days
        ):
            continue
        out.append(p)
    return out


def sort_priorities(
    priorities: Iterable[BinPriority],
    key: SortKey | str = SortKey.DAYS_TO_THRESHOLD,
    descending: bool = False,
) -> list[BinPriority]:
    """Sort rows by ``key``; ties break on ``bin_id`` ascending.

    Undetermined ``days_to_threshold`` ranks as least urgent: after every
    determined value ascending, before them descending.
    """
    sort_key = SortKey(key)
    rows = sorted(priorities, key=lambda p: p.bin_id)

    if sort_key is SortKey.ESTIMATED_FILL:
        return sorted(rows, key=lambda p: p.estimated_fill, reverse=descending)
    if sort_key is SortKey.GROWTH:
        return sorted(rows, key=lambda p: p.predicted_growth, reverse=descending)

    determined = [p for p in rows if p.days_to_threshold is not None]
    undetermined = [p for p in rows if p.days_to_threshold is None]
    determined.sort(key=lambda p: p.days_to_threshold, reverse=descending)
    return undetermined + determined if descending else determined + undetermined


def summarize_priorities(
    priorities: Iterable[BinPriority],
    high_max_days: int = 1,
    missing_prediction_count: int = 0,
) -> PrioritySummary:
    """Compute headline counts over an (unfiltered) priority list."""
    rows = list(priorities)
    growths = [p.predicted_growth for p in rows]
    return PrioritySummary(
        total_bins=len(rows),
        high_priority_bins=sum(
            1 for p in rows
            if p.days_to_threshold is not None and p.days_to_threshold <= high_max_days
        ),
        avg_predicted_growth=sum(growths) / len(growths) if growths else 0.0,
        new_cycle_detected_count=sum(1 for p in rows if p.is_stale),
        missing_prediction_count=missing_prediction_count,
        high_risk_unscheduled_count=sum(
            1 for p in rows
            if p.risk_level is RiskLevel.HIGH
            and p.planning_status is PlanningStatus.NOT_SCHEDULED
        ),
    )


def _start_of_day(value: datetime) -> datetime:
    value = ensure_utc(value)
    return datetime.combine(value.date(), time.min, tzinfo=value.tzinfo)
