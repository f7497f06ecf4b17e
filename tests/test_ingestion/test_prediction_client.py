"""
Tests for the growth-prediction HTTP client.

The model service is faked with ``httpx.MockTransport``; no network I/O.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from bin_forecaster.config import PredictionModelConfig
from bin_forecaster.errors import PredictionMalformed, PredictionUnavailable
from bin_forecaster.ingestion.prediction_client import (
    GrowthPrediction,
    PredictionClient,
    build_http_client,
)


def _predict(http_client: httpx.AsyncClient, **client_kwargs) -> GrowthPrediction:
    async def _go() -> GrowthPrediction:
        async with http_client:
            client = PredictionClient(http_client, **client_kwargs)
            return await client.predict(
                12, fill_pct=70, cycle_duration_days=8, cycle_start_month=3
            )

    return asyncio.run(_go())


class TestRequestShape:
    def test_posts_expected_payload(self, model_http_client):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"predicted_next_avg_daily_growth": 5.0})

        http_client = model_http_client(handler)
        _predict(http_client)

        assert paths == ["/predict"]
        assert http_client.requests_seen == [{
            "container_id": "12",
            "collection_fill_percentage": 70,
            "cycle_duration_days": 8,
            "cycle_start_month": 3,
        }]

    def test_custom_predict_path(self, model_http_client):
        paths: list[str] = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"predicted_next_avg_daily_growth": 1.0})

        _predict(model_http_client(handler), predict_path="/v2/fill/predict")
        assert paths == ["/v2/fill/predict"]


class TestSuccessfulResponses:
    def test_growth_and_version(self, model_http_client):
        result = _predict(model_http_client(
            lambda r: httpx.Response(
                200, json={"predicted_next_avg_daily_growth": 5.0, "model_version": "2025-03"}
            )
        ))
        assert result == GrowthPrediction(avg_daily_growth=5.0, model_version="2025-03")

    @pytest.mark.parametrize("body", [
        {"predicted_next_avg_daily_growth": 2.5},
        {"predicted_next_avg_daily_growth": 2.5, "model_version": None},
        {"predicted_next_avg_daily_growth": 2.5, "model_version": "   "},
    ])
    def test_missing_version_uses_default(self, model_http_client, body):
        result = _predict(
            model_http_client(lambda r: httpx.Response(200, json=body)),
            default_model_version="fallback-1",
        )
        assert result.model_version == "fallback-1"

    def test_integer_and_negative_growth_accepted(self, model_http_client):
        result = _predict(model_http_client(
            lambda r: httpx.Response(200, json={"predicted_next_avg_daily_growth": -2})
        ))
        assert result.avg_daily_growth == -2.0

    def test_extra_fields_ignored(self, model_http_client):
        result = _predict(model_http_client(
            lambda r: httpx.Response(
                200, json={"predicted_next_avg_daily_growth": 0.0, "confidence": 0.9}
            )
        ))
        assert result.avg_daily_growth == 0.0


class TestUnavailable:
    @pytest.mark.parametrize("status", [400, 404, 500, 503])
    def test_non_success_status(self, model_http_client, status):
        with pytest.raises(PredictionUnavailable) as exc_info:
            _predict(model_http_client(lambda r: httpx.Response(status, text="nope")))
        assert exc_info.value.status_code == status
        assert exc_info.value.bin_id == 12

    def test_timeout(self, model_http_client):
        def handler(request):
            raise httpx.ReadTimeout("model too slow", request=request)

        with pytest.raises(PredictionUnavailable) as exc_info:
            _predict(model_http_client(handler))
        assert exc_info.value.status_code is None

    def test_connection_error(self, model_http_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PredictionUnavailable):
            _predict(model_http_client(handler))


class TestMalformed:
    @pytest.mark.parametrize("content", [
        b"not json at all",
        b"[]",
        b"{}",
        b'{"predicted_next_avg_daily_growth": null}',
        b'{"predicted_next_avg_daily_growth": "5.0"}',
        b'{"predicted_next_avg_daily_growth": NaN}',
        b'{"model_version": "v3"}',
    ])
    def test_unparseable_bodies(self, model_http_client, content):
        with pytest.raises(PredictionMalformed) as exc_info:
            _predict(model_http_client(
                lambda r: httpx.Response(
                    200, content=content, headers={"Content-Type": "application/json"}
                )
            ))
        assert exc_info.value.reason == "prediction_malformed"


class TestBuildHttpClient:
    def test_uses_config_base_url_and_timeout(self):
        cfg = PredictionModelConfig(base_url="http://model.internal:9000", timeout_seconds=2.5)
        client = build_http_client(cfg)
        try:
            assert str(client.base_url).startswith("http://model.internal:9000")
            assert client.timeout.read == 2.5
        finally:
            asyncio.run(client.aclose())
