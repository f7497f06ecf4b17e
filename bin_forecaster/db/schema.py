"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. before every refresh).

Table creation order respects foreign key dependencies:
  1. collection_bins          (no FKs)
  2. collection_events        (no FKs; bin_id is a plain identifier because
                               events are recorded by the collection workflow
                               whether or not the bin is registered here)
  3. route_stops              (no FKs)
  4. run_metadata             (no FKs)
  5. fill_level_predictions   (→ run_metadata)

Timestamps are stored as fixed-width ISO-8601 UTC strings (see
``utils.time_utils.to_db_timestamp``) so lexical order equals time order.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_COLLECTION_BINS = """
CREATE TABLE IF NOT EXISTS collection_bins (
    bin_id      INTEGER PRIMARY KEY,
    region      TEXT,
    bin_status  TEXT    NOT NULL DEFAULT 'active'
                CHECK (bin_status IN ('active', 'inactive')),
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_COLLECTION_EVENTS = """
CREATE TABLE IF NOT EXISTS collection_events (
    collection_id   INTEGER PRIMARY KEY AUTOINCREMENT,
    bin_id          INTEGER NOT NULL,
    collected_at    TEXT,
    fill_level      INTEGER NOT NULL CHECK (fill_level BETWEEN 0 AND 100),
    recorded_at     TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_COLLECTION_EVENTS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_collection_events_bin_time
    ON collection_events(bin_id, collected_at);
"""

_DDL_ROUTE_STOPS = """
CREATE TABLE IF NOT EXISTS route_stops (
    stop_id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    route_id                INTEGER,
    bin_id                  INTEGER NOT NULL,
    planned_collection_at   TEXT    NOT NULL
);
"""

_DDL_ROUTE_STOPS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_route_stops_bin_time
    ON route_stops(bin_id, planned_collection_at);
"""

_DDL_RUN_METADATA = """
CREATE TABLE IF NOT EXISTS run_metadata (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    pipeline_stage  TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started',
    config_snapshot TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL,
    finished_at     TEXT
);
"""

_DDL_FILL_LEVEL_PREDICTIONS = """
CREATE TABLE IF NOT EXISTS fill_level_predictions (
    prediction_id               INTEGER PRIMARY KEY AUTOINCREMENT,
    bin_id                      INTEGER NOT NULL,
    predicted_avg_daily_growth  REAL    NOT NULL,
    generated_at                TEXT    NOT NULL,
    model_version               TEXT    NOT NULL CHECK (model_version <> ''),
    run_id                      INTEGER REFERENCES run_metadata(run_id)
);
"""

_DDL_FILL_LEVEL_PREDICTIONS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_predictions_bin_generated
    ON fill_level_predictions(bin_id, generated_at);
"""

_ALL_DDL = [
    _DDL_COLLECTION_BINS,
    _DDL_COLLECTION_EVENTS,
    _DDL_COLLECTION_EVENTS_INDEXES,
    _DDL_ROUTE_STOPS,
    _DDL_ROUTE_STOPS_INDEXES,
    _DDL_RUN_METADATA,
    _DDL_FILL_LEVEL_PREDICTIONS,
    _DDL_FILL_LEVEL_PREDICTIONS_INDEXES,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "collection_bins",
    "collection_events",
    "route_stops",
    "run_metadata",
    "fill_level_predictions",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — each statement uses ``IF NOT EXISTS`` guards.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
