"""
DialectAdapter: everything that differs between backends, in one place.

Callers (pool, selector, runner, seeder, verifier, façade) hold an adapter
and never branch on the dialect themselves.
"""

import re
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.engine import Dialect

from dbanchor.core.sql import execute
from dbanchor.models import BackendDescriptor, DialectEnum

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

_LOCK_POLL_SEC = 0.25


class DialectAdapter:
    dialect: DialectEnum
    placeholder = "%s"
    transactional_ddl = True
    ping_sql = "SELECT 1"
    # SQLAlchemy dialect used only for its identifier quoting rules.
    sa_dialect: Dialect

    # ------------------------------------------------------------------
    # Connections and transactions
    # ------------------------------------------------------------------

    def connect(self, descriptor: BackendDescriptor, *, timeout: float) -> Any:
        raise NotImplementedError

    def begin(self, conn: Any) -> None:
        """Open an explicit transaction (no-op where the driver opens one implicitly)."""

    # ------------------------------------------------------------------
    # Identifiers and values
    # ------------------------------------------------------------------

    def quote(self, identifier: str) -> str:
        if not isinstance(identifier, str) or not _IDENTIFIER_RE.match(identifier):
            raise ValueError(f"invalid SQL identifier: {identifier!r}")
        return self.sa_dialect.identifier_preparer.quote(identifier)

    def placeholders(self, n: int) -> str:
        return ", ".join([self.placeholder] * n)

    def to_db_bool(self, value: bool) -> Any:
        return bool(value)

    def from_db_bool(self, value: Any) -> bool | None:
        if value is None:
            return None
        return bool(value)

    def to_db_datetime(self, value: datetime) -> Any:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def from_db_datetime(self, value: Any) -> datetime | None:
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_db_decimal(self, value: Decimal) -> Any:
        return value

    def from_db_decimal(self, value: Any) -> Decimal | None:
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))

    def to_db_value(self, value: Any) -> Any:
        """Bind-parameter form of a Python value (booleans, datetimes, decimals converted)."""
        if isinstance(value, bool):
            return self.to_db_bool(value)
        if isinstance(value, datetime):
            return self.to_db_datetime(value)
        if isinstance(value, Decimal):
            return self.to_db_decimal(value)
        return value

    # ------------------------------------------------------------------
    # Error classification
    # ------------------------------------------------------------------

    def is_already_exists(self, exc: BaseException) -> bool:
        """Duplicate table/column/index/constraint class of errors."""
        return "already exists" in str(exc).lower()

    def is_unique_violation(self, exc: BaseException) -> bool:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def insert_row(
        self,
        conn: Any,
        table: str,
        values: Mapping[str, Any],
        *,
        id_column: str | None = None,
    ) -> Any:
        """INSERT one row; return the generated id when ``id_column`` is given."""
        if not values:
            raise ValueError("insert needs at least one column")
        cols = ", ".join(self.quote(c) for c in values)
        sql = (
            f"INSERT INTO {self.quote(table)} ({cols}) "
            f"VALUES ({self.placeholders(len(values))})"
        )
        cur = execute(conn, sql, [self.to_db_value(v) for v in values.values()])
        try:
            return cur.lastrowid if id_column is not None else None
        finally:
            cur.close()

    def table_exists_sql(self) -> str:
        raise NotImplementedError

    def table_exists(self, conn: Any, table: str) -> bool:
        cur = execute(conn, self.table_exists_sql(), [table])
        try:
            return cur.fetchone() is not None
        finally:
            cur.close()

    def ledger_ddl(self, table: str) -> str:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Migration lock
    # ------------------------------------------------------------------

    def try_migration_lock(self, conn: Any, name: str, *, stale_after: float) -> bool:
        raise NotImplementedError

    def release_migration_lock(self, conn: Any, name: str) -> None:
        raise NotImplementedError

    def acquire_migration_lock(
        self,
        conn: Any,
        name: str,
        timeout: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> bool:
        """
        Poll try_migration_lock until it succeeds or ``timeout`` elapses.

        Returns True if another holder had to be waited for. Raises
        TimeoutError when the lock could not be taken in time.
        """
        deadline = clock() + timeout
        waited = False
        while True:
            if self.try_migration_lock(conn, name, stale_after=timeout):
                return waited
            waited = True
            remaining = deadline - clock()
            if remaining <= 0:
                raise TimeoutError(f"migration lock {name!r} not acquired within {timeout}s")
            sleep(min(_LOCK_POLL_SEC, remaining))
