"""MySQL / MariaDB adapter (pymysql). Typical local server-based backend."""

import math
from datetime import datetime, timezone
from typing import Any

import pymysql
from pymysql.constants import CLIENT
from sqlalchemy.dialects import mysql

from dbanchor.core.sql import execute
from dbanchor.models import BackendDescriptor, DialectEnum

from .base import DialectAdapter

# ER_TABLE_EXISTS_ERROR, ER_DUP_FIELDNAME, ER_DUP_KEYNAME, ER_FK_DUP_NAME,
# ER_DUP_KEY, ER_DB_CREATE_EXISTS, ER_SP_ALREADY_EXISTS, ER_TRG_ALREADY_EXISTS
_ALREADY_EXISTS_CODES = frozenset({1050, 1060, 1061, 1826, 1022, 1007, 1304, 1359})
# ER_DUP_ENTRY, ER_DUP_ENTRY_WITH_KEY_NAME
_UNIQUE_CODES = frozenset({1062, 1586})


def _error_code(exc: BaseException) -> int | None:
    if isinstance(exc, pymysql.err.MySQLError) and exc.args:
        code = exc.args[0]
        if isinstance(code, int):
            return code
    return None


class MySQLAdapter(DialectAdapter):
    dialect = DialectEnum.MYSQL
    # DDL commits implicitly in MySQL; scripts cannot be rolled back as a unit.
    transactional_ddl = False
    sa_dialect = mysql.dialect()

    def connect(self, descriptor: BackendDescriptor, *, timeout: float) -> Any:
        return pymysql.connect(
            host=descriptor.host,
            port=int(descriptor.port or 3306),
            database=descriptor.database,
            user=descriptor.username,
            password=descriptor.password or "",
            connect_timeout=max(1, math.ceil(timeout)),
            charset="utf8mb4",
            # rowcount = rows matched, as on postgres / sqlite
            client_flag=CLIENT.FOUND_ROWS,
        )

    def begin(self, conn: Any) -> None:
        conn.begin()

    def to_db_bool(self, value: bool) -> Any:
        return 1 if value else 0

    def to_db_datetime(self, value: datetime) -> Any:
        # DATETIME has no zone: store naive UTC.
        return super().to_db_datetime(value).replace(tzinfo=None)

    def from_db_datetime(self, value: Any) -> datetime | None:
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return super().from_db_datetime(value)

    def is_already_exists(self, exc: BaseException) -> bool:
        code = _error_code(exc)
        if code is not None:
            return code in _ALREADY_EXISTS_CODES
        return super().is_already_exists(exc)

    def is_unique_violation(self, exc: BaseException) -> bool:
        return _error_code(exc) in _UNIQUE_CODES

    def table_exists_sql(self) -> str:
        return (
            "SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_name = %s"
        )

    def ledger_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self.quote(table)} ("
            "version VARCHAR(64) NOT NULL PRIMARY KEY, "
            "checksum CHAR(64) NOT NULL, "
            "applied_at DATETIME(6) NOT NULL"
            ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"
        )

    def try_migration_lock(self, conn: Any, name: str, *, stale_after: float) -> bool:
        # Named lock bound to the session; freed automatically if it drops.
        cur = execute(conn, "SELECT GET_LOCK(%s, 0)", [f"dbanchor:{name}"[:64]])
        try:
            row = cur.fetchone()
        finally:
            cur.close()
        conn.commit()
        return bool(row and row[0] == 1)

    def release_migration_lock(self, conn: Any, name: str) -> None:
        cur = execute(conn, "SELECT RELEASE_LOCK(%s)", [f"dbanchor:{name}"[:64]])
        cur.close()
        conn.commit()
