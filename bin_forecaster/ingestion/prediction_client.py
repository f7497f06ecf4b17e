"""
Growth-prediction model client.

The model is a separate HTTP service. One call per bin:

  POST {base_url}{predict_path}
  {
    "container_id":               "12",      # bin id as a string
    "collection_fill_percentage": 70,
    "cycle_duration_days":        8,
    "cycle_start_month":          3
  }

  200 OK
  {"predicted_next_avg_daily_growth": 5.0, "model_version": "2024-03"}

``model_version`` is optional in the response; when absent or blank the
configured default (``prediction_model.default_model_version``) is used.

Failure mapping:
  transport error / timeout / non-2xx          → PredictionUnavailable
  2xx with unparseable body / bad growth value → PredictionMalformed

The ``httpx.AsyncClient`` is passed in. ``build_http_client(config)`` builds
the production one; tests pass a client wired to ``httpx.MockTransport``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bin_forecaster.config import PredictionModelConfig
from bin_forecaster.errors import PredictionMalformed, PredictionUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrowthPrediction:
    """Parsed model output for one bin.

    Attributes:
        avg_daily_growth: Predicted fill-percentage growth per day (may be <= 0).
        model_version:    Version tag reported by the model (or the default).
    """

    avg_daily_growth: float
    model_version: str


class _PredictResponse(BaseModel):
    """Wire shape of a successful ``/predict`` response."""

    model_config = ConfigDict(extra="ignore")

    predicted_next_avg_daily_growth: float = Field(strict=True, allow_inf_nan=False)
    model_version: Optional[str] = None


class PredictionClient:
    """Calls the growth-prediction model for one bin at a time.

    Args:
        http_client:           Open ``httpx.AsyncClient`` (base URL and timeout
                               already configured). Not closed by this class.
        predict_path:          Path of the predict endpoint.
        default_model_version: Version tag used when the response has none.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        predict_path: str = "/predict",
        default_model_version: str = "v1",
    ) -> None:
        self._http = http_client
        self._predict_path = predict_path
        self._default_model_version = default_model_version

    @classmethod
    def from_config(
        cls, http_client: httpx.AsyncClient, config: PredictionModelConfig
    ) -> "PredictionClient":
        return cls(
            http_client,
            predict_path=config.predict_path,
            default_model_version=config.default_model_version,
        )

    async def predict(
        self,
        bin_id: int,
        fill_pct: float,
        cycle_duration_days: int,
        cycle_start_month: int,
    ) -> GrowthPrediction:
        """Request the next-cycle average daily growth for one bin.

        Args:
            bin_id:              Bin identifier (sent as a string).
            fill_pct:            Fill % observed at the last collection.
            cycle_duration_days: Length of the last completed cycle, whole days.
            cycle_start_month:   Month (1–12) of the last collection.

        Returns:
            ``GrowthPrediction``.

        Raises:
            PredictionUnavailable: Transport error, timeout, or non-2xx status.
            PredictionMalformed:   2xx response whose body is not a valid prediction.
        """
        payload = {
            "container_id": str(bin_id),
            "collection_fill_percentage": fill_pct,
            "cycle_duration_days": cycle_duration_days,
            "cycle_start_month": cycle_start_month,
        }

        try:
            resp = await self._http.post(self._predict_path, json=payload)
        except httpx.TimeoutException as exc:
            raise PredictionUnavailable(
                f"Prediction request for bin {bin_id} timed out: {exc}", bin_id=bin_id
            ) from exc
        except httpx.HTTPError as exc:
            raise PredictionUnavailable(
                f"Prediction request for bin {bin_id} failed: {exc}", bin_id=bin_id
            ) from exc

        if not resp.is_success:
            raise PredictionUnavailable(
                f"Prediction model returned HTTP {resp.status_code} for bin {bin_id}.",
                bin_id=bin_id,
                status_code=resp.status_code,
            )

        try:
            body = _PredictResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise PredictionMalformed(
                f"Unparseable prediction response for bin {bin_id}: "
                f"{exc.error_count()} validation error(s).",
                bin_id=bin_id,
            ) from exc

        version = (body.model_version or "").strip() or self._default_model_version
        logger.debug(
            "Bin %d: growth=%.4f model_version=%s",
            bin_id, body.predicted_next_avg_daily_growth, version,
        )
        return GrowthPrediction(
            avg_daily_growth=body.predicted_next_avg_daily_growth,
            model_version=version,
        )


def build_http_client(config: PredictionModelConfig) -> httpx.AsyncClient:
    """Build the production ``httpx.AsyncClient`` for the prediction model.

    The connection pool is sized to ``max_concurrency`` so the semaphore in
    the refresh orchestrator, not the pool, is the effective limit.
    """
    return httpx.AsyncClient(
        base_url=config.base_url,
        timeout=httpx.Timeout(config.timeout_seconds),
        limits=httpx.Limits(
            max_connections=config.max_concurrency,
            max_keepalive_connections=config.max_concurrency,
        ),
        headers={"Accept": "application/json"},
    )
