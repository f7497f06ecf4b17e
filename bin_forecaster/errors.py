"""
Error taxonomy for the refresh and scoring engine.

Skip conditions (``InsufficientHistory``, ``StaleTimestampMissing``) and
per-bin failures (``PredictionUnavailable``, ``PredictionMalformed``,
``PersistenceFailure``) are raised inside a single bin's refresh and are
converted into that bin's outcome by the orchestrator. Only
``StoreUnavailable`` escalates out of a refresh pass.

An undetermined forecast (growth <= 0 below threshold) is not an error; see
``scoring.scorer.ForecastStatus.UNDETERMINED``.
"""

from __future__ import annotations

from typing import Optional


class BinForecasterError(Exception):
    """Base class for all engine errors.

    Attributes:
        bin_id: Bin the error applies to, or ``None`` for pass-level errors.
    """

    def __init__(self, message: str, bin_id: Optional[int] = None) -> None:
        self.bin_id = bin_id
        super().__init__(message)


# ── Skip conditions ───────────────────────────────────────────────────────────


class RefreshSkipped(BinForecasterError):
    """Base for conditions that make a bin ineligible for this pass (not failures)."""

    reason: str = "skipped"


class InsufficientHistory(RefreshSkipped):
    """Fewer than two usable collection events for the bin."""

    reason = "insufficient_history"


class StaleTimestampMissing(RefreshSkipped):
    """One of the two most recent collection events has no timestamp."""

    reason = "timestamp_missing"


# ── Per-bin failures ──────────────────────────────────────────────────────────


class PredictionError(BinForecasterError):
    """Base for prediction-model call failures."""

    reason: str = "prediction_error"


class PredictionUnavailable(PredictionError):
    """The model call errored, timed out, or returned a non-success status.

    Attributes:
        status_code: HTTP status code when the model answered, else ``None``.
    """

    reason = "prediction_unavailable"

    def __init__(
        self,
        message: str,
        bin_id: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, bin_id=bin_id)


class PredictionMalformed(PredictionError):
    """The model answered 2xx but the body could not be parsed into a growth value."""

    reason = "prediction_malformed"


class PersistenceFailure(BinForecasterError):
    """Appending a prediction row failed; the bin is not counted as refreshed."""

    reason: str = "persistence_failure"


class StoreUnavailable(PersistenceFailure):
    """The store itself failed (e.g. commit or connection error); fatal for the pass."""

    reason = "store_unavailable"
