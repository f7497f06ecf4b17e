"""
CSV import for collection data (bins, collection events, planned route stops).

In production these rows are written by the collection-confirmation and
route-planning workflows. The importer exists so the engine can run locally
against exported data.

All files are comma delimited with a header row.

bins.csv
  Required: bin_id
  Optional: region, bin_status (active / inactive, default active)

collections.csv
  Required: bin_id, fill_level (integer 0–100)
  Optional: collected_at (ISO 8601; empty → unrecorded; no offset → UTC)

route_stops.csv
  Required: bin_id, planned_collection_at (ISO 8601)
  Optional: route_id

Each file is validated in full before anything is written. If any row fails,
a single ``ValueError`` lists the first 10 failures.
"""

from __future__ import annotations

import csv
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TypeVar

from pydantic import ValidationError

from bin_forecaster.db.repositories.collection_repo import (
    CollectionBinRepository,
    CollectionEventRepository,
    RouteStopRepository,
)
from bin_forecaster.models.collection import CollectionBin, CollectionEvent, RouteStop

logger = logging.getLogger(__name__)

T = TypeVar("T")

BIN_CSV_COLUMNS = frozenset({"bin_id"})
COLLECTION_CSV_COLUMNS = frozenset({"bin_id", "fill_level"})
ROUTE_STOP_CSV_COLUMNS = frozenset({"bin_id", "planned_collection_at"})


@dataclass(frozen=True)
class ImportCounts:
    bins: int = 0
    collections: int = 0
    route_stops: int = 0


def parse_bins_csv(path: Path) -> list[CollectionBin]:
    """Parse a bins CSV into validated :class:`CollectionBin` objects."""
    return _parse_csv(path, BIN_CSV_COLUMNS, _row_to_bin, "bin")


def parse_collections_csv(path: Path) -> list[CollectionEvent]:
    """Parse a collections CSV into validated :class:`CollectionEvent` objects."""
    return _parse_csv(path, COLLECTION_CSV_COLUMNS, _row_to_event, "collection")


def parse_route_stops_csv(path: Path) -> list[RouteStop]:
    """Parse a route stops CSV into validated :class:`RouteStop` objects."""
    return _parse_csv(path, ROUTE_STOP_CSV_COLUMNS, _row_to_stop, "route stop")


def import_collection_data(
    conn: sqlite3.Connection,
    bins_csv: Optional[Path] = None,
    collections_csv: Optional[Path] = None,
    route_stops_csv: Optional[Path] = None,
) -> ImportCounts:
    """Parse the given files and write their rows.

    Every supplied file is parsed before the first insert, so a bad file
    leaves the store untouched. The caller's connection context commits.

    Raises:
        FileNotFoundError: A supplied path does not exist.
        ValueError: Missing columns or rows that fail validation.
    """
    bins = parse_bins_csv(bins_csv) if bins_csv else []
    events = parse_collections_csv(collections_csv) if collections_csv else []
    stops = parse_route_stops_csv(route_stops_csv) if route_stops_csv else []

    bin_repo = CollectionBinRepository(conn)
    for b in bins:
        bin_repo.upsert(b)

    event_repo = CollectionEventRepository(conn)
    for e in events:
        event_repo.insert(e)

    stop_repo = RouteStopRepository(conn)
    for s in stops:
        stop_repo.insert(s)

    counts = ImportCounts(bins=len(bins), collections=len(events), route_stops=len(stops))
    logger.info(
        "Imported %d bin(s), %d collection(s), %d route stop(s).",
        counts.bins, counts.collections, counts.route_stops,
    )
    return counts


# ── Private helpers ────────────────────────────────────────────────────────────

def _parse_csv(
    path: Path,
    required: frozenset[str],
    convert: Callable[[dict[str, str]], T],
    label: str,
) -> list[T]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{label.capitalize()} CSV file not found: {path}")

    with open(path, encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            raise ValueError(f"CSV file is empty or has no header row: {path}")

        actual_cols = {c.strip() for c in reader.fieldnames}
        missing = required - actual_cols
        if missing:
            raise ValueError(
                f"CSV missing required columns: {sorted(missing)}\n"
                f"Found columns: {sorted(actual_cols)}"
            )
        rows = [{(k or "").strip(): (v or "") for k, v in r.items()} for r in reader]

    if not rows:
        logger.warning("%s CSV is empty (header only): %s", label.capitalize(), path)
        return []

    parsed: list[T] = []
    errors: list[tuple[int, str]] = []
    for i, row in enumerate(rows):
        line_no = i + 2
        try:
            parsed.append(convert(row))
        except (ValueError, ValidationError) as exc:
            errors.append((line_no, str(exc)))

    if errors:
        max_shown = 10
        detail = "\n".join(f"  Row {ln}: {msg}" for ln, msg in errors[:max_shown])
        suffix = f"\n  … and {len(errors) - max_shown} more" if len(errors) > max_shown else ""
        raise ValueError(
            f"{len(errors)} row(s) failed validation in {path.name}:\n{detail}{suffix}"
        )

    logger.info("Parsed %d %s row(s) from %s", len(parsed), label, path.name)
    return parsed


def _row_to_bin(row: dict[str, str]) -> CollectionBin:
    return CollectionBin(
        bin_id=_parse_int(row, "bin_id"),
        region=_opt(row, "region"),
        bin_status=_opt(row, "bin_status") or "active",
    )


def _row_to_event(row: dict[str, str]) -> CollectionEvent:
    return CollectionEvent(
        bin_id=_parse_int(row, "bin_id"),
        collected_at=_parse_datetime(row, "collected_at"),
        fill_level=_parse_int(row, "fill_level"),
    )


def _row_to_stop(row: dict[str, str]) -> RouteStop:
    planned = _parse_datetime(row, "planned_collection_at")
    if planned is None:
        raise ValueError("Required field 'planned_collection_at' is empty.")
    route_id = _opt(row, "route_id")
    return RouteStop(
        route_id=_parse_int(row, "route_id") if route_id else None,
        bin_id=_parse_int(row, "bin_id"),
        planned_collection_at=planned,
    )


def _opt(row: dict[str, str], key: str) -> Optional[str]:
    """Return an optional string field, or None if absent/empty."""
    v = row.get(key, "").strip()
    return v if v else None


def _parse_int(row: dict[str, str], key: str) -> int:
    v = _opt(row, key)
    if v is None:
        raise ValueError(f"Required field '{key}' is empty.")
    try:
        return int(v)
    except ValueError:
        raise ValueError(f"Invalid integer for '{key}': '{v}'.")


def _parse_datetime(row: dict[str, str], key: str) -> Optional[datetime]:
    """Parse an ISO 8601 datetime; naive values are taken as UTC by the models."""
    v = _opt(row, key)
    if v is None:
        return None
    try:
        return datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(
            f"Invalid datetime for '{key}': '{v}'. "
            "Expected ISO 8601, e.g. '2025-03-14T08:30:00Z'."
        )
