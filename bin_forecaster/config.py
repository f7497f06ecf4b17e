"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``BIN_FORECASTER_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

All pipeline stages and CLI commands receive an ``AppConfig`` instance —
never raw dicts or individual env var lookups scattered through the codebase.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/bin_forecaster.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class PredictionModelConfig(BaseModel):
    """Remote growth-prediction model endpoint settings.

    ``max_concurrency`` bounds the number of in-flight prediction calls during
    one refresh pass. ``refresh_deadline_seconds`` (optional) abandons any
    calls still in flight once the pass has run for that long.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = "http://localhost:5000"
    predict_path: str = "/predict"
    timeout_seconds: float = 10.0
    max_concurrency: int = 8
    refresh_deadline_seconds: Optional[float] = None
    default_model_version: str = "v1"

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {v}.")
        return v

    @field_validator("max_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {v}.")
        return v

    @field_validator("refresh_deadline_seconds")
    @classmethod
    def validate_deadline(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError(f"refresh_deadline_seconds must be > 0, got {v}.")
        return v


class ScoringConfig(BaseModel):
    """Priority scoring parameters.

    ``fill_baseline`` selects where the fill projection starts after a
    collection: ``"last_observed"`` adds projected growth to the fill level
    recorded at the last collection, ``"empty"`` projects from zero.
    """

    model_config = ConfigDict(frozen=True)

    threshold_pct: float = 80.0
    fill_baseline: Literal["last_observed", "empty"] = "last_observed"
    high_risk_max_days: int = 1
    medium_risk_max_days: int = 3

    @field_validator("threshold_pct")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 < v <= 100.0:
            raise ValueError(f"threshold_pct must be in (0, 100], got {v}.")
        return v

    @model_validator(mode="after")
    def validate_risk_bands(self) -> "ScoringConfig":
        if self.high_risk_max_days < 0:
            raise ValueError("high_risk_max_days must be non-negative.")
        if self.medium_risk_max_days < self.high_risk_max_days:
            raise ValueError(
                f"medium_risk_max_days ({self.medium_risk_max_days}) must be >= "
                f"high_risk_max_days ({self.high_risk_max_days})."
            )
        return self


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/bin_forecaster.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    All pipeline stages and CLI commands receive an ``AppConfig`` instance.
    It is constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    prediction_model: PredictionModelConfig = PredictionModelConfig()
    scoring: ScoringConfig = ScoringConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config explicitly."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply BIN_FORECASTER_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply BIN_FORECASTER_* env vars to the raw config dict.

    Supported overrides:
      BIN_FORECASTER_DB_PATH    → raw["database"]["db_path"]
      BIN_FORECASTER_LOG_LEVEL  → raw["logging"]["level"]
      BIN_FORECASTER_MODEL_URL  → raw["prediction_model"]["base_url"]
      BIN_FORECASTER_DEBUG      → raw["debug"]
    """
    if db_path := os.environ.get("BIN_FORECASTER_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("BIN_FORECASTER_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if model_url := os.environ.get("BIN_FORECASTER_MODEL_URL"):
        raw.setdefault("prediction_model", {})["base_url"] = model_url

    if debug := os.environ.get("BIN_FORECASTER_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        prediction_model=PredictionModelConfig(**raw.get("prediction_model", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
