"""
Opening the bin store.

``get_connection(db_path)`` yields a ``sqlite3.Connection`` ready for the
repositories: rows come back as ``sqlite3.Row``, foreign keys are enforced,
lock waits use the configured busy timeout, and file databases run in WAL
mode so ``show-priorities`` can read while a refresh pass holds its write
transaction. The block commits on clean exit and rolls back if it raises.

If the store cannot be opened at all (missing directory that cannot be
created, path is a directory, unreadable file) the failure surfaces as
``StoreUnavailable`` rather than a bare ``sqlite3`` / ``OSError``.

``connect_from_config(database)`` is the same thing driven by the
``[database]`` section of ``AppConfig``::

    with connect_from_config(config.database) as conn:
        apply_schema(conn)
        snapshot = load_history_snapshot(conn)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Generator, Optional

from bin_forecaster.errors import StoreUnavailable

if TYPE_CHECKING:
    from bin_forecaster.config import DatabaseConfig

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


def _open_store(db_path: str, wal_mode: bool, busy_timeout_ms: int) -> sqlite3.Connection:
    """Create the parent directory, connect, and apply connection pragmas."""
    in_memory = str(db_path) == IN_MEMORY
    try:
        if not in_memory:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    except (sqlite3.Error, OSError) as exc:
        raise StoreUnavailable(f"Cannot open bin store at {db_path}: {exc}") from exc

    conn.row_factory = sqlite3.Row
    pragmas = ["PRAGMA foreign_keys = ON;", f"PRAGMA busy_timeout = {busy_timeout_ms};"]
    if wal_mode and not in_memory:
        pragmas.append("PRAGMA journal_mode = WAL;")
    try:
        for pragma in pragmas:
            conn.execute(pragma)
    except sqlite3.Error as exc:
        conn.close()
        raise StoreUnavailable(f"Cannot configure bin store at {db_path}: {exc}") from exc

    logger.debug("Opened bin store %s (wal=%s)", db_path, wal_mode and not in_memory)
    return conn


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Yield an open store connection; commit on success, roll back on error.

    Args:
        db_path: SQLite file path, or ``":memory:"``.
        wal_mode: Use WAL journaling (ignored for in-memory stores).
        busy_timeout_ms: How long to wait on a locked database.

    Raises:
        StoreUnavailable: The store could not be opened.
    """
    conn = _open_store(db_path, wal_mode, busy_timeout_ms)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def connect_from_config(
    database: "DatabaseConfig",
    db_path: Optional[str] = None,
) -> Generator[sqlite3.Connection, None, None]:
    """``get_connection()`` with the settings of a ``DatabaseConfig``.

    Args:
        database: Database section of ``AppConfig``.
        db_path: Optional path override (e.g. from a ``--db-path`` option).
    """
    with get_connection(
        db_path or database.db_path,
        wal_mode=database.wal_mode,
        busy_timeout_ms=database.busy_timeout_ms,
    ) as conn:
        yield conn
