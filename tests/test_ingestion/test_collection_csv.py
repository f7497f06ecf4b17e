"""
Tests for bin_forecaster.ingestion.collection_csv — CSV import of bins,
collection events and route stops.

Covers:
  - each parser: valid rows, optional fields, missing columns, bad rows
  - import_collection_data(): writes all three tables, and writes nothing
    when any supplied file is invalid
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from bin_forecaster.db.repositories.collection_repo import (
    CollectionBinRepository,
    CollectionEventRepository,
    RouteStopRepository,
)
from bin_forecaster.ingestion.collection_csv import (
    ImportCounts,
    import_collection_data,
    parse_bins_csv,
    parse_collections_csv,
    parse_route_stops_csv,
)


def _write_csv(tmp_path: Path, name: str, content: str) -> Path:
    p = tmp_path / name
    p.write_text(content, encoding="utf-8")
    return p


BINS_CSV = (
    "bin_id,region,bin_status\n"
    "12,Harbour,active\n"
    "13,,\n"
    "14,Old Town, Inactive \n"
)

COLLECTIONS_CSV = (
    "bin_id,collected_at,fill_level\n"
    "12,2025-03-04T08:00:00Z,40\n"
    "12,2025-03-12T08:00:00+01:00,70\n"
    "13,,55\n"
    "13,2025-03-10T09:30:00,20\n"
)

ROUTE_STOPS_CSV = (
    "route_id,bin_id,planned_collection_at\n"
    "4,12,2025-03-15T07:00:00Z\n"
    ",13,2025-03-16T07:00:00Z\n"
)


# ── parse_bins_csv ─────────────────────────────────────────────────────────────

class TestParseBinsCsv:
    def test_valid_rows(self, tmp_path):
        bins = parse_bins_csv(_write_csv(tmp_path, "bins.csv", BINS_CSV))
        assert [(b.bin_id, b.region, b.bin_status) for b in bins] == [
            (12, "Harbour", "active"),
            (13, None, "active"),
            (14, "Old Town", "inactive"),
        ]

    def test_only_bin_id_required(self, tmp_path):
        bins = parse_bins_csv(_write_csv(tmp_path, "bins.csv", "bin_id\n1\n2\n"))
        assert [b.bin_id for b in bins] == [1, 2]

    def test_unknown_status_rejected(self, tmp_path):
        path = _write_csv(tmp_path, "bins.csv", "bin_id,bin_status\n1,retired\n")
        with pytest.raises(ValueError, match="failed validation"):
            parse_bins_csv(path)


# ── parse_collections_csv ──────────────────────────────────────────────────────

class TestParseCollectionsCsv:
    def test_valid_rows(self, tmp_path):
        events = parse_collections_csv(_write_csv(tmp_path, "c.csv", COLLECTIONS_CSV))
        assert len(events) == 4
        assert events[0].collected_at == datetime(2025, 3, 4, 8, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self, tmp_path):
        events = parse_collections_csv(_write_csv(tmp_path, "c.csv", COLLECTIONS_CSV))
        assert events[1].collected_at == datetime(2025, 3, 12, 7, tzinfo=timezone.utc)

    def test_blank_timestamp_kept_as_unrecorded(self, tmp_path):
        events = parse_collections_csv(_write_csv(tmp_path, "c.csv", COLLECTIONS_CSV))
        assert events[2].collected_at is None
        assert events[2].fill_level == 55

    def test_naive_timestamp_taken_as_utc(self, tmp_path):
        events = parse_collections_csv(_write_csv(tmp_path, "c.csv", COLLECTIONS_CSV))
        assert events[3].collected_at == datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)

    def test_missing_required_column(self, tmp_path):
        path = _write_csv(tmp_path, "c.csv", "bin_id,collected_at\n1,2025-03-01T00:00:00Z\n")
        with pytest.raises(ValueError, match="missing required columns"):
            parse_collections_csv(path)

    def test_errors_reported_with_row_numbers(self, tmp_path):
        path = _write_csv(
            tmp_path, "c.csv",
            "bin_id,collected_at,fill_level\n"
            "1,2025-03-01T00:00:00Z,50\n"
            "2,not-a-date,50\n"
            "3,2025-03-01T00:00:00Z,150\n"
            "x,2025-03-01T00:00:00Z,10\n",
        )
        with pytest.raises(ValueError) as exc_info:
            parse_collections_csv(path)
        message = str(exc_info.value)
        assert "3 row(s) failed validation" in message
        assert "Row 3:" in message
        assert "Row 4:" in message
        assert "Row 5:" in message
        assert "Row 2:" not in message

    def test_error_listing_truncated(self, tmp_path):
        body = "bin_id,fill_level\n" + "".join(f"{i},101\n" for i in range(12))
        with pytest.raises(ValueError, match="and 2 more"):
            parse_collections_csv(_write_csv(tmp_path, "c.csv", body))

    def test_header_only_returns_empty(self, tmp_path):
        path = _write_csv(tmp_path, "c.csv", "bin_id,fill_level\n")
        assert parse_collections_csv(path) == []

    def test_empty_file_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="no header"):
            parse_collections_csv(_write_csv(tmp_path, "c.csv", ""))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            parse_collections_csv(tmp_path / "nope.csv")


# ── parse_route_stops_csv ──────────────────────────────────────────────────────

class TestParseRouteStopsCsv:
    def test_valid_rows(self, tmp_path):
        stops = parse_route_stops_csv(_write_csv(tmp_path, "r.csv", ROUTE_STOPS_CSV))
        assert [(s.route_id, s.bin_id) for s in stops] == [(4, 12), (None, 13)]

    def test_planned_time_required(self, tmp_path):
        path = _write_csv(tmp_path, "r.csv", "bin_id,planned_collection_at\n1,\n")
        with pytest.raises(ValueError, match="planned_collection_at"):
            parse_route_stops_csv(path)


# ── import_collection_data ─────────────────────────────────────────────────────

class TestImportCollectionData:
    def test_imports_all_files(self, tmp_path, in_memory_db):
        counts = import_collection_data(
            in_memory_db,
            bins_csv=_write_csv(tmp_path, "bins.csv", BINS_CSV),
            collections_csv=_write_csv(tmp_path, "c.csv", COLLECTIONS_CSV),
            route_stops_csv=_write_csv(tmp_path, "r.csv", ROUTE_STOPS_CSV),
        )
        assert counts == ImportCounts(bins=3, collections=4, route_stops=2)
        assert set(CollectionBinRepository(in_memory_db).get_all()) == {12, 13, 14}
        assert CollectionEventRepository(in_memory_db).count() == 4
        next_stops = RouteStopRepository(in_memory_db).get_next_stop_by_bin(
            datetime(2025, 3, 14, tzinfo=timezone.utc)
        )
        assert next_stops[12].route_id == 4

    def test_only_collections(self, tmp_path, in_memory_db):
        counts = import_collection_data(
            in_memory_db, collections_csv=_write_csv(tmp_path, "c.csv", COLLECTIONS_CSV)
        )
        assert counts == ImportCounts(collections=4)

    def test_reimporting_bins_updates_in_place(self, tmp_path, in_memory_db):
        import_collection_data(in_memory_db, bins_csv=_write_csv(tmp_path, "b.csv", BINS_CSV))
        import_collection_data(
            in_memory_db,
            bins_csv=_write_csv(tmp_path, "b2.csv", "bin_id,region\n12,Quayside\n"),
        )
        bins = CollectionBinRepository(in_memory_db).get_all()
        assert len(bins) == 3
        assert bins[12].region == "Quayside"

    def test_bad_file_writes_nothing(self, tmp_path, in_memory_db):
        with pytest.raises(ValueError):
            import_collection_data(
                in_memory_db,
                bins_csv=_write_csv(tmp_path, "bins.csv", BINS_CSV),
                collections_csv=_write_csv(tmp_path, "c.csv", COLLECTIONS_CSV),
                route_stops_csv=_write_csv(
                    tmp_path, "r.csv", "bin_id,planned_collection_at\n1,tomorrow\n"
                ),
            )
        assert CollectionBinRepository(in_memory_db).get_all() == {}
        assert CollectionEventRepository(in_memory_db).count() == 0
