"""
Fill-level prediction model.

A ``FillLevelPrediction`` is one model output for a bin's *next* cycle: the
predicted average percentage points of fill accrued per day. Rows are
append-only; the latest row per bin (by ``generated_at``) is authoritative.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from bin_forecaster.utils.time_utils import ensure_utc


class FillLevelPrediction(BaseModel):
    """Predicted average daily fill growth for a bin's next cycle.

    Attributes:
        prediction_id: Auto-assigned DB PK; ``None`` before insertion.
        bin_id: Bin the prediction applies to.
        predicted_avg_daily_growth: Percentage points per day. May be zero or
            negative if the model emits it.
        generated_at: UTC time the prediction was produced.
        model_version: Version tag reported by (or defaulted for) the model.
        run_id: FK to ``run_metadata.run_id`` of the refresh that wrote it.
    """

    model_config = ConfigDict(frozen=True)

    prediction_id: Optional[int] = None
    bin_id: int
    predicted_avg_daily_growth: float
    generated_at: datetime
    model_version: str
    run_id: Optional[int] = None

    @field_validator("predicted_avg_daily_growth")
    @classmethod
    def validate_growth_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError(f"predicted_avg_daily_growth must be finite, got {v}.")
        return v

    @field_validator("generated_at")
    @classmethod
    def validate_generated_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("model_version")
    @classmethod
    def validate_model_version(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("model_version must not be empty.")
        return v.strip()
