"""Tests for layered config loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from bin_forecaster.config import (
    AppConfig,
    PredictionModelConfig,
    ScoringConfig,
    load_config,
)

_ENV_VARS = (
    "BIN_FORECASTER_DB_PATH",
    "BIN_FORECASTER_LOG_LEVEL",
    "BIN_FORECASTER_MODEL_URL",
    "BIN_FORECASTER_DEBUG",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write_toml(tmp_path: Path, body: str, name: str = "app.toml") -> Path:
    p = tmp_path / name
    p.write_text(body, encoding="utf-8")
    return p


class TestLoadConfig:
    def test_committed_defaults_load(self):
        cfg = load_config()
        assert isinstance(cfg, AppConfig)
        assert cfg.scoring.threshold_pct == 80.0
        assert cfg.prediction_model.predict_path == "/predict"

    def test_explicit_file(self, tmp_path):
        path = _write_toml(
            tmp_path,
            '[database]\ndb_path = "x.db"\n'
            '[prediction_model]\nbase_url = "http://m:1"\nmax_concurrency = 3\n'
            '[scoring]\nthreshold_pct = 90.0\nfill_baseline = "empty"\n',
        )
        cfg = load_config(path)
        assert cfg.database.db_path == "x.db"
        assert cfg.prediction_model.base_url == "http://m:1"
        assert cfg.prediction_model.max_concurrency == 3
        assert cfg.scoring.fill_baseline == "empty"
        assert cfg.logging.level == "INFO"

    def test_local_toml_overrides(self, tmp_path):
        path = _write_toml(tmp_path, "[scoring]\nthreshold_pct = 90.0\nhigh_risk_max_days = 2\n")
        _write_toml(tmp_path, "[scoring]\nthreshold_pct = 75.0\n", name="local.toml")
        cfg = load_config(path)
        assert cfg.scoring.threshold_pct == 75.0
        assert cfg.scoring.high_risk_max_days == 2

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = _write_toml(tmp_path, '[database]\ndb_path = "toml.db"\n')
        monkeypatch.setenv("BIN_FORECASTER_DB_PATH", "env.db")
        monkeypatch.setenv("BIN_FORECASTER_MODEL_URL", "http://env-model:8080")
        monkeypatch.setenv("BIN_FORECASTER_LOG_LEVEL", "debug")
        monkeypatch.setenv("BIN_FORECASTER_DEBUG", "true")
        cfg = load_config(path)
        assert cfg.database.db_path == "env.db"
        assert cfg.prediction_model.base_url == "http://env-model:8080"
        assert cfg.logging.level == "DEBUG"
        assert cfg.debug is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.toml")

    def test_invalid_value_raises(self, tmp_path):
        path = _write_toml(tmp_path, "[prediction_model]\nmax_concurrency = 0\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_config_is_frozen(self):
        cfg = AppConfig()
        with pytest.raises(ValidationError):
            cfg.debug = True  # type: ignore[misc]


class TestValidation:
    @pytest.mark.parametrize("threshold", [0.0, -5.0, 100.5])
    def test_threshold_range(self, threshold):
        with pytest.raises(ValidationError):
            ScoringConfig(threshold_pct=threshold)

    def test_threshold_100_allowed(self):
        assert ScoringConfig(threshold_pct=100.0).threshold_pct == 100.0

    def test_unknown_baseline(self):
        with pytest.raises(ValidationError):
            ScoringConfig(fill_baseline="half")

    def test_risk_bands_ordered(self):
        with pytest.raises(ValidationError):
            ScoringConfig(high_risk_max_days=4, medium_risk_max_days=3)

    def test_negative_high_band(self):
        with pytest.raises(ValidationError):
            ScoringConfig(high_risk_max_days=-1, medium_risk_max_days=3)

    @pytest.mark.parametrize("field,value", [
        ("timeout_seconds", 0.0),
        ("max_concurrency", 0),
        ("refresh_deadline_seconds", -1.0),
    ])
    def test_prediction_model_bounds(self, field, value):
        with pytest.raises(ValidationError):
            PredictionModelConfig(**{field: value})
