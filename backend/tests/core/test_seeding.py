"""Tests for core.seeding.SeedManager on a migrated sqlite backend."""

import logging
import sqlite3

import pytest

from dbanchor.core.seeding import SeedManager
from dbanchor.initial_data import DISTRICTS, seed_reference_data


def test_districts_seeded_once(migrated_handle):
    manager = SeedManager(migrated_handle)

    first = manager.seed("districts", DISTRICTS, "district_id")
    assert first.expected == 9
    assert first.inserted == 9
    assert first.already_present == 0
    assert first.found == 9

    second = manager.seed("districts", DISTRICTS, "district_id")
    assert second.inserted == 0
    assert second.already_present == 9
    assert second.found == 9
    assert second.consistent


def test_existing_rows_are_not_modified(migrated_handle):
    with migrated_handle.connection() as conn:
        conn.execute(
            "INSERT INTO districts (district_id, name) VALUES (?, ?)",
            ["DIS-EASTLANDS", "Renamed by an operator"],
        )
    report = SeedManager(migrated_handle).seed("districts", DISTRICTS, "district_id")
    assert report.inserted == 8
    assert report.already_present == 1
    with migrated_handle.connection() as conn:
        name = conn.execute(
            "SELECT name FROM districts WHERE district_id = ?", ["DIS-EASTLANDS"]
        ).fetchone()[0]
    assert name == "Renamed by an operator"


def test_duplicate_keys_in_batch_counted_once(migrated_handle):
    rows = [
        {"district_id": "DIS-A", "name": "A"},
        {"district_id": "DIS-A", "name": "A again"},
    ]
    report = SeedManager(migrated_handle).seed("districts", rows, "district_id")
    assert report.expected == 1
    assert report.inserted == 1
    assert report.already_present == 1
    assert report.found == 1


def test_row_without_natural_key_rejected(migrated_handle):
    with pytest.raises(ValueError, match="district_id"):
        SeedManager(migrated_handle).seed("districts", [{"name": "No key"}], "district_id")


def test_invalid_identifier_rejected(migrated_handle):
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        SeedManager(migrated_handle).seed("districts; --", DISTRICTS, "district_id")


def test_non_duplicate_errors_propagate(migrated_handle):
    # name is NOT NULL: this is a real error, not an already-present row
    with pytest.raises(Exception, match="NOT NULL"):
        SeedManager(migrated_handle).seed(
            "districts", [{"district_id": "DIS-B", "name": None}], "district_id"
        )


def test_reference_data(migrated_handle, caplog):
    with caplog.at_level(logging.INFO, logger="dbanchor.core.seeding"):
        reports = seed_reference_data(migrated_handle)
    assert {r.table: r.inserted for r in reports} == {
        "districts": 9,
        "modules": 8,
        "system_settings": 8,
    }
    assert all(r.consistent for r in reports)
    assert "Seeded districts: 9 inserted" in caplog.text


def test_unique_violation_on_another_column_propagates(migrated_handle):
    rows = [
        {"id": "u1", "email": "a@example.org", "password_hash": "x", "full_name": "A"},
        {"id": "u2", "email": "a@example.org", "password_hash": "x", "full_name": "B"},
    ]
    with pytest.raises(sqlite3.IntegrityError, match="users.email"):
        SeedManager(migrated_handle).seed("users", rows, "id")
    with migrated_handle.connection() as conn:
        ids = [r[0] for r in conn.execute("SELECT id FROM users ORDER BY id")]
    assert ids == ["u1"]
