"""Unit tests for core.dialects: quoting, value conversion, error classification, locks."""

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pymysql
import pytest

from dbanchor.core.dialects import (
    MySQLAdapter,
    PostgresAdapter,
    SQLiteAdapter,
    get_adapter,
)
from dbanchor.models import DialectEnum


class _PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def test_get_adapter():
    assert isinstance(get_adapter(DialectEnum.POSTGRES), PostgresAdapter)
    assert isinstance(get_adapter("mysql"), MySQLAdapter)
    assert isinstance(get_adapter("sqlite"), SQLiteAdapter)
    with pytest.raises(ValueError, match="Unsupported dialect"):
        get_adapter("oracle")


class TestQuoting:
    @pytest.mark.parametrize("bad", ["users; DROP TABLE x", "a b", "1abc", "", "t\"x"])
    def test_invalid_identifiers_rejected(self, bad):
        for adapter in (PostgresAdapter(), MySQLAdapter(), SQLiteAdapter()):
            with pytest.raises(ValueError, match="invalid SQL identifier"):
                adapter.quote(bad)

    def test_reserved_words_quoted_per_dialect(self):
        assert PostgresAdapter().quote("user") == '"user"'
        assert MySQLAdapter().quote("order") == "`order`"
        assert SQLiteAdapter().quote("districts") == "districts"

    def test_placeholders(self):
        assert SQLiteAdapter().placeholders(3) == "?, ?, ?"
        assert PostgresAdapter().placeholders(2) == "%s, %s"


class TestValues:
    def test_booleans(self):
        assert SQLiteAdapter().to_db_bool(True) == 1
        assert MySQLAdapter().to_db_bool(False) == 0
        assert PostgresAdapter().to_db_bool(True) is True
        assert SQLiteAdapter().from_db_bool(0) is False
        assert SQLiteAdapter().from_db_bool(None) is None

    def test_to_db_value_only_converts_bool_and_datetime(self):
        adapter = SQLiteAdapter()
        assert adapter.to_db_value(True) == 1
        assert adapter.to_db_value(7) == 7
        assert adapter.to_db_value("x") == "x"

    def test_naive_datetimes_are_utc(self):
        naive = datetime(2026, 1, 2, 3, 4, 5)
        assert SQLiteAdapter().to_db_datetime(naive) == "2026-01-02T03:04:05+00:00"
        assert MySQLAdapter().to_db_datetime(naive) == naive
        assert PostgresAdapter().to_db_datetime(naive).tzinfo == timezone.utc

    def test_aware_datetime_converted_to_utc(self):
        eat = timezone(timedelta(hours=3))
        value = datetime(2026, 1, 2, 6, 0, tzinfo=eat)
        assert MySQLAdapter().to_db_datetime(value) == datetime(2026, 1, 2, 3, 0)

    def test_from_db_datetime(self):
        adapter = SQLiteAdapter()
        parsed = adapter.from_db_datetime("2026-01-02 03:04:05")
        assert parsed == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert MySQLAdapter().from_db_datetime(datetime(2026, 1, 2)).tzinfo == timezone.utc
        assert adapter.from_db_datetime(None) is None


class TestErrorClassification:
    def test_sqlite(self):
        adapter = SQLiteAdapter()
        assert adapter.is_already_exists(sqlite3.OperationalError("table users already exists"))
        assert adapter.is_already_exists(sqlite3.OperationalError("duplicate column name: x"))
        assert not adapter.is_already_exists(sqlite3.OperationalError("no such table: x"))
        assert adapter.is_unique_violation(sqlite3.IntegrityError("UNIQUE constraint failed: t.k"))
        assert not adapter.is_unique_violation(sqlite3.IntegrityError("NOT NULL constraint failed: t.k"))

    def test_postgres(self):
        adapter = PostgresAdapter()
        assert adapter.is_already_exists(_PgError("42P07"))
        assert not adapter.is_already_exists(_PgError("42601"))
        assert adapter.is_unique_violation(_PgError("23505"))
        assert not adapter.is_unique_violation(_PgError("23502"))

    def test_mysql(self):
        adapter = MySQLAdapter()
        assert adapter.is_already_exists(pymysql.err.OperationalError(1050, "Table 'users' already exists"))
        assert adapter.is_already_exists(pymysql.err.OperationalError(1061, "Duplicate key name"))
        assert not adapter.is_already_exists(pymysql.err.ProgrammingError(1064, "syntax error"))
        assert adapter.is_unique_violation(pymysql.err.IntegrityError(1062, "Duplicate entry"))
        assert not adapter.is_unique_violation(pymysql.err.IntegrityError(1452, "FK fails"))


class TestSQLite:
    def _connect(self, path: Path):
        from dbanchor.models import BackendDescriptor, BackendKindEnum

        descriptor = BackendDescriptor(
            kind=BackendKindEnum.EMBEDDED, dialect=DialectEnum.SQLITE, path=str(path)
        )
        return SQLiteAdapter().connect(descriptor, timeout=1.0)

    def test_connect_creates_parent_directory(self, tmp_path):
        conn = self._connect(tmp_path / "nested" / "dir" / "app.db")
        try:
            assert (tmp_path / "nested" / "dir" / "app.db").exists()
        finally:
            conn.close()

    def test_insert_row_returns_generated_id(self, tmp_path):
        adapter = SQLiteAdapter()
        conn = self._connect(tmp_path / "app.db")
        try:
            conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, flag INTEGER)")
            first = adapter.insert_row(conn, "t", {"flag": True}, id_column="id")
            second = adapter.insert_row(conn, "t", {"flag": False}, id_column="id")
            assert (first, second) == (1, 2)
            assert conn.execute("SELECT flag FROM t ORDER BY id").fetchall() == [(1,), (0,)]
            assert adapter.table_exists(conn, "t")
            assert not adapter.table_exists(conn, "missing")
        finally:
            conn.close()

    def test_migration_lock_is_exclusive(self, tmp_path):
        adapter = SQLiteAdapter()
        a = self._connect(tmp_path / "app.db")
        b = self._connect(tmp_path / "app.db")
        try:
            assert adapter.try_migration_lock(a, "schema_migrations", stale_after=60)
            assert not adapter.try_migration_lock(b, "schema_migrations", stale_after=60)
            adapter.release_migration_lock(a, "schema_migrations")
            assert adapter.try_migration_lock(b, "schema_migrations", stale_after=60)
        finally:
            a.close()
            b.close()

    def test_stale_migration_lock_taken_over(self, tmp_path):
        adapter = SQLiteAdapter()
        a = self._connect(tmp_path / "app.db")
        b = self._connect(tmp_path / "app.db")
        try:
            assert adapter.try_migration_lock(a, "schema_migrations", stale_after=60)
            a.execute(
                'UPDATE "schema_migrations_lock" SET locked_at = ? WHERE id = 1',
                ["2000-01-01T00:00:00+00:00"],
            )
            assert adapter.try_migration_lock(b, "schema_migrations", stale_after=60)
        finally:
            a.close()
            b.close()


class TestAcquireMigrationLock:
    class _Busy(SQLiteAdapter):
        def __init__(self, free_after: int | None) -> None:
            self.calls = 0
            self.free_after = free_after

        def try_migration_lock(self, conn, name, *, stale_after):
            self.calls += 1
            return self.free_after is not None and self.calls > self.free_after

    def test_waits_then_acquires(self):
        adapter = self._Busy(free_after=2)
        now = [0.0]

        def sleep(seconds: float) -> None:
            now[0] += seconds

        waited = adapter.acquire_migration_lock(
            None, "schema_migrations", 5.0, clock=lambda: now[0], sleep=sleep
        )
        assert waited is True
        assert adapter.calls == 3

    def test_immediate_acquire_did_not_wait(self):
        adapter = self._Busy(free_after=0)
        assert adapter.acquire_migration_lock(None, "schema_migrations", 5.0) is False

    def test_timeout(self):
        adapter = self._Busy(free_after=None)
        now = [0.0]

        def sleep(seconds: float) -> None:
            now[0] += seconds

        with pytest.raises(TimeoutError):
            adapter.acquire_migration_lock(
                None, "schema_migrations", 1.0, clock=lambda: now[0], sleep=sleep
            )
