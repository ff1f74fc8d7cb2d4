"""Tests for the startup sequence in dbanchor.bootstrap."""

from dbanchor.bootstrap import bootstrap
from dbanchor.core.config import settings


def test_bootstrap_migrates_seeds_and_verifies(selector):
    result = bootstrap(selector, settings)
    assert result.handle is selector.handle
    assert result.migrations.applied == ["001", "002", "003"]
    assert {r.table for r in result.seeds} == {"districts", "modules", "system_settings"}
    assert result.schema.all_ok
    # warmed to min_idle before migrating
    assert result.handle.pool.stats()["idle"] >= 1


def test_bootstrap_is_idempotent(selector):
    bootstrap(selector, settings)
    again = bootstrap(selector, settings)
    assert again.migrations.applied == []
    assert again.migrations.skipped == ["001", "002", "003"]
    assert sum(r.inserted for r in again.seeds) == 0
    assert again.schema.all_ok


def test_bootstrap_without_migrations_reports_missing_schema(selector):
    result = bootstrap(selector, settings, migrate=False, seed=False)
    assert result.migrations is None
    assert result.seeds == []
    assert not result.schema.all_ok
    summary = result.summary()
    assert summary["schema_ok"] is False
    assert summary["backend"]["name"] == "embedded:sqlite"
