"""PostgreSQL adapter (psycopg 3). Used for managed services and local servers."""

import math
import zlib
from collections.abc import Mapping
from typing import Any

import psycopg
from sqlalchemy.dialects import postgresql

from dbanchor.core.sql import execute
from dbanchor.models import BackendDescriptor, DialectEnum

from .base import DialectAdapter

# duplicate_table, duplicate_column, duplicate_object, duplicate_schema,
# duplicate_function, duplicate_database
_ALREADY_EXISTS_STATES = frozenset(
    {"42P07", "42701", "42710", "42P06", "42723", "42P04"}
)
_UNIQUE_VIOLATION = "23505"


def _lock_key(name: str) -> int:
    return zlib.crc32(f"dbanchor:{name}".encode("utf-8"))


class PostgresAdapter(DialectAdapter):
    dialect = DialectEnum.POSTGRES
    transactional_ddl = True
    sa_dialect = postgresql.dialect()

    def connect(self, descriptor: BackendDescriptor, *, timeout: float) -> Any:
        kwargs: dict[str, Any] = {"connect_timeout": max(1, math.ceil(timeout))}
        if descriptor.sslmode:
            kwargs["sslmode"] = descriptor.sslmode
        if descriptor.url:
            return psycopg.connect(descriptor.url, **kwargs)
        return psycopg.connect(
            host=descriptor.host,
            port=int(descriptor.port or 5432),
            dbname=descriptor.database,
            user=descriptor.username,
            password=descriptor.password or "",
            **kwargs,
        )

    def is_already_exists(self, exc: BaseException) -> bool:
        state = getattr(exc, "sqlstate", None)
        if state is not None:
            return state in _ALREADY_EXISTS_STATES
        return super().is_already_exists(exc)

    def is_unique_violation(self, exc: BaseException) -> bool:
        return getattr(exc, "sqlstate", None) == _UNIQUE_VIOLATION

    def insert_row(
        self,
        conn: Any,
        table: str,
        values: Mapping[str, Any],
        *,
        id_column: str | None = None,
    ) -> Any:
        if id_column is None:
            return super().insert_row(conn, table, values)
        if not values:
            raise ValueError("insert needs at least one column")
        cols = ", ".join(self.quote(c) for c in values)
        sql = (
            f"INSERT INTO {self.quote(table)} ({cols}) "
            f"VALUES ({self.placeholders(len(values))}) "
            f"RETURNING {self.quote(id_column)}"
        )
        cur = execute(conn, sql, [self.to_db_value(v) for v in values.values()])
        try:
            row = cur.fetchone()
            return row[0] if row else None
        finally:
            cur.close()

    def table_exists_sql(self) -> str:
        return (
            "SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = %s"
        )

    def ledger_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self.quote(table)} ("
            "version VARCHAR(64) PRIMARY KEY, "
            "checksum CHAR(64) NOT NULL, "
            "applied_at TIMESTAMP WITH TIME ZONE NOT NULL)"
        )

    def try_migration_lock(self, conn: Any, name: str, *, stale_after: float) -> bool:
        # Session-level advisory lock: released on unlock or when the session ends.
        cur = execute(conn, "SELECT pg_try_advisory_lock(%s)", [_lock_key(name)])
        try:
            got = bool(cur.fetchone()[0])
        finally:
            cur.close()
        conn.commit()
        return got

    def release_migration_lock(self, conn: Any, name: str) -> None:
        cur = execute(conn, "SELECT pg_advisory_unlock(%s)", [_lock_key(name)])
        cur.close()
        conn.commit()
