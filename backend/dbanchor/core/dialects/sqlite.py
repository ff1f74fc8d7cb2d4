"""
SQLite adapter: the embedded, file-backed backend.

Connections run with ``isolation_level=None`` so transactions are explicit
(``BEGIN`` via :meth:`SQLiteAdapter.begin`); that is what makes DDL in a
migration script atomic.
"""

import os
import socket
import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from sqlalchemy.dialects import sqlite

from dbanchor.core.sql import execute
from dbanchor.models import BackendDescriptor, DialectEnum

from .base import DialectAdapter


class SQLiteAdapter(DialectAdapter):
    dialect = DialectEnum.SQLITE
    placeholder = "?"
    transactional_ddl = True
    # Reads the schema page, so a file that is not a database fails the ping.
    ping_sql = "SELECT count(*) FROM sqlite_master"
    sa_dialect = sqlite.dialect()

    def connect(self, descriptor: BackendDescriptor, *, timeout: float) -> Any:
        path = descriptor.path or ""
        if path != ":memory:":
            db_path = Path(path).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            path = str(db_path)
        conn = sqlite3.connect(
            path,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,  # the pool hands a connection to one thread at a time
        )
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def begin(self, conn: Any) -> None:
        if not conn.in_transaction:
            conn.execute("BEGIN")

    def to_db_bool(self, value: bool) -> Any:
        return 1 if value else 0

    def to_db_datetime(self, value: datetime) -> Any:
        return super().to_db_datetime(value).isoformat()

    def to_db_decimal(self, value: Decimal) -> Any:
        # sqlite3 cannot bind Decimal; NUMERIC affinity converts the text back.
        return str(value)

    def is_already_exists(self, exc: BaseException) -> bool:
        if not isinstance(exc, sqlite3.OperationalError):
            return False
        msg = str(exc).lower()
        return "already exists" in msg or "duplicate column name" in msg

    def is_unique_violation(self, exc: BaseException) -> bool:
        return isinstance(exc, sqlite3.IntegrityError) and "UNIQUE constraint failed" in str(exc)

    def table_exists_sql(self) -> str:
        return "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?"

    def ledger_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self.quote(table)} ("
            "version TEXT PRIMARY KEY, "
            "checksum TEXT NOT NULL, "
            "applied_at TEXT NOT NULL)"
        )

    # ------------------------------------------------------------------
    # Migration lock: single-row lock table
    # ------------------------------------------------------------------

    def _lock_table(self, name: str) -> str:
        return self.quote(f"{name}_lock")

    def try_migration_lock(self, conn: Any, name: str, *, stale_after: float) -> bool:
        table = self._lock_table(name)
        execute(
            conn,
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "id INTEGER PRIMARY KEY CHECK (id = 1), "
            "holder TEXT NOT NULL, locked_at TEXT NOT NULL)",
        ).close()
        now = datetime.now(timezone.utc)
        holder = f"{socket.gethostname()}:{os.getpid()}"
        try:
            execute(
                conn,
                f"INSERT INTO {table} (id, holder, locked_at) VALUES (1, ?, ?)",
                [holder, now.isoformat()],
            ).close()
            return True
        except sqlite3.IntegrityError:
            pass
        # Holder died without releasing: take over once the lock is stale.
        cur = execute(conn, f"SELECT locked_at FROM {table} WHERE id = 1")
        try:
            row = cur.fetchone()
        finally:
            cur.close()
        if row is None:
            return False
        locked_at = self.from_db_datetime(row[0])
        if locked_at is not None and now - locked_at > timedelta(seconds=stale_after):
            cur = execute(
                conn,
                f"UPDATE {table} SET holder = ?, locked_at = ? WHERE id = 1 AND locked_at = ?",
                [holder, now.isoformat(), row[0]],
            )
            try:
                return cur.rowcount == 1
            finally:
                cur.close()
        return False

    def release_migration_lock(self, conn: Any, name: str) -> None:
        execute(conn, f"DELETE FROM {self._lock_table(name)} WHERE id = 1").close()
