"""
Shared pytest fixtures for the Bin Fill Forecaster test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``file_db_config``: An ``AppConfig`` pointing at a temporary on-disk DB
    (stages open their own connections, so they need a real file).
  - ``add_history``: Inserts collection events for a bin.
  - ``model_http_client``: Builds an ``httpx.AsyncClient`` backed by
    ``httpx.MockTransport`` so no test touches the network.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional

import httpx
import pytest

from bin_forecaster.config import AppConfig, DatabaseConfig
from bin_forecaster.db.repositories.collection_repo import CollectionEventRepository
from bin_forecaster.db.schema import apply_schema
from bin_forecaster.models.collection import CollectionEvent
from bin_forecaster.models.prediction import FillLevelPrediction

# Fixed "now" so cycle and elapsed-day arithmetic is deterministic.
NOW = datetime(2025, 3, 14, 12, 0, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def file_db_config(tmp_path) -> AppConfig:
    """``AppConfig`` whose database lives in ``tmp_path``."""
    return AppConfig(database=DatabaseConfig(db_path=str(tmp_path / "test.db")))


# ── Domain object factories ───────────────────────────────────────────────────

@pytest.fixture
def add_history() -> Callable[..., None]:
    """Return ``add(conn, bin_id, [(collected_at, fill_level), ...])``."""

    def _add(
        conn: sqlite3.Connection,
        bin_id: int,
        events: list[tuple[Optional[datetime], int]],
    ) -> None:
        repo = CollectionEventRepository(conn)
        for collected_at, fill in events:
            repo.insert(CollectionEvent(bin_id=bin_id, collected_at=collected_at, fill_level=fill))
        conn.commit()

    return _add


@pytest.fixture
def sample_prediction() -> FillLevelPrediction:
    """A valid ``FillLevelPrediction`` for bin 12."""
    return FillLevelPrediction(
        bin_id=12,
        predicted_avg_daily_growth=5.0,
        generated_at=days_ago(1),
        model_version="v1",
    )


# ── HTTP fakes ────────────────────────────────────────────────────────────────

@pytest.fixture
def model_http_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Return a factory wrapping a request handler in an ``httpx.AsyncClient``.

    The handler may be sync or async. Each request's JSON body is also
    recorded on ``client.requests_seen`` for assertions.
    """

    def _factory(handler) -> httpx.AsyncClient:
        seen: list[dict] = []

        async def _recording(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            result = handler(request)
            if hasattr(result, "__await__"):
                result = await result
            return result

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(_recording),
            base_url="http://model.test",
        )
        client.requests_seen = seen  # type: ignore[attr-defined]
        return client

    return _factory
