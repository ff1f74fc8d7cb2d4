"""
Query façade: uniform CRUD over the active backend.

Callers pass plain dicts and get plain dicts back; identifiers are quoted,
placeholders, booleans, datetimes, decimals and generated ids are translated by the
handle's dialect adapter. Results have the same keys, types and ordering
on every backend.

    facade = QueryFacade(handle, tables=[TableSpec("districts", boolean_columns={"is_active"})])
    row = facade.insert("districts", {"district_id": "DIS-X", "name": "X"})
    facade.find("districts", {"name": "X"}, order_by="-id", limit=10)
"""

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from dbanchor.core.sql import cursor_to_dicts, execute
from dbanchor.models import IdStrategyEnum

logger = logging.getLogger(__name__)

# OFFSET without LIMIT is not portable; this is BIGINT max.
_NO_LIMIT = 9223372036854775807


@dataclass(frozen=True)
class TableSpec:
    """How the façade treats one table."""

    name: str
    id_column: str = "id"
    id_strategy: IdStrategyEnum = IdStrategyEnum.DATABASE
    soft_delete_column: str | None = "is_active"
    boolean_columns: frozenset[str] = field(default_factory=frozenset)
    datetime_columns: frozenset[str] = field(default_factory=frozenset)
    decimal_columns: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "boolean_columns", frozenset(self.boolean_columns))
        object.__setattr__(self, "datetime_columns", frozenset(self.datetime_columns))
        object.__setattr__(self, "decimal_columns", frozenset(self.decimal_columns))


class QueryFacade:
    def __init__(self, handle: Any, tables: Iterable[TableSpec] = ()) -> None:
        self._handle = handle
        self._adapter = handle.adapter
        self._tables: dict[str, TableSpec] = {t.name: t for t in tables}

    def register(self, spec: TableSpec) -> None:
        self._tables[spec.name] = spec

    def spec(self, table: str) -> TableSpec:
        """Registered spec for *table*; unregistered tables get the defaults."""
        return self._tables.get(table) or TableSpec(name=table)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: str | Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        include_deleted: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Rows matching equality *filters* (``None`` matches NULL). ``order_by``
        takes column names, ``-col`` for descending; the id column is always
        the final tie-breaker. Soft-deleted rows are hidden unless
        ``include_deleted``.
        """
        spec = self.spec(table)
        where, params = self._where(spec, filters, include_deleted)
        sql = f"SELECT * FROM {self._adapter.quote(table)}{where}{self._order(spec, order_by)}"
        if limit is not None or offset:
            sql += f" LIMIT {int(limit) if limit is not None else _NO_LIMIT}"
        if offset:
            sql += f" OFFSET {int(offset)}"
        with self._handle.connection() as conn:
            rows = self._select(conn, sql, params)
        return [self._normalize(spec, r) for r in rows]

    def get(self, table: str, id: Any) -> dict[str, Any] | None:
        """One row by id, soft-deleted or not."""
        spec = self.spec(table)
        with self._handle.connection() as conn:
            return self._fetch_by_id(conn, spec, id)

    def count(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        include_deleted: bool = False,
    ) -> int:
        spec = self.spec(table)
        where, params = self._where(spec, filters, include_deleted)
        sql = f"SELECT COUNT(*) FROM {self._adapter.quote(table)}{where}"
        with self._handle.connection() as conn:
            cur = execute(conn, sql, params)
            try:
                n = int(cur.fetchone()[0])
            finally:
                cur.close()
            conn.commit()
        return n

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, table: str, values: Mapping[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored (generated id included)."""
        if not values:
            raise ValueError("insert needs at least one column")
        spec = self.spec(table)
        data = dict(values)
        id_given = data.get(spec.id_column) is not None
        if not id_given and spec.id_strategy == IdStrategyEnum.CLIENT_UUID:
            data[spec.id_column] = str(uuid.uuid4())
            id_given = True

        with self._handle.connection() as conn:
            self._adapter.begin(conn)
            try:
                generated = self._adapter.insert_row(
                    conn,
                    table,
                    data,
                    id_column=None if id_given else spec.id_column,
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            row_id = data[spec.id_column] if id_given else generated
            row = self._fetch_by_id(conn, spec, row_id)
        if row is None:
            raise LookupError(f"{table}: inserted row {row_id!r} not found on re-read")
        return row

    def update(
        self, table: str, id: Any, values: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        """Update columns of one row; returns the updated row or None if absent."""
        if not values:
            raise ValueError("update needs at least one column")
        spec = self.spec(table)
        if spec.id_column in values:
            raise ValueError(f"{table}: {spec.id_column!r} cannot be updated")
        q = self._adapter.quote
        ph = self._adapter.placeholder
        sets = ", ".join(f"{q(col)} = {ph}" for col in values)
        sql = f"UPDATE {q(table)} SET {sets} WHERE {q(spec.id_column)} = {ph}"
        params = [self._adapter.to_db_value(v) for v in values.values()] + [id]
        with self._handle.connection() as conn:
            matched = self._write(conn, sql, params)
            if matched == 0:
                return None
            return self._fetch_by_id(conn, spec, id)

    def soft_delete(self, table: str, id: Any) -> bool:
        """
        Clear the row's soft-delete flag. True if an active row was flagged;
        False if the row does not exist or was already deleted.
        """
        spec = self.spec(table)
        if not spec.soft_delete_column:
            raise ValueError(f"{table} has no soft-delete column")
        q = self._adapter.quote
        ph = self._adapter.placeholder
        flag = q(spec.soft_delete_column)
        sql = (
            f"UPDATE {q(table)} SET {flag} = {ph} "
            f"WHERE {q(spec.id_column)} = {ph} AND {flag} = {ph}"
        )
        params = [self._adapter.to_db_bool(False), id, self._adapter.to_db_bool(True)]
        with self._handle.connection() as conn:
            return self._write(conn, sql, params) > 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _where(
        self,
        spec: TableSpec,
        filters: Mapping[str, Any] | None,
        include_deleted: bool,
    ) -> tuple[str, list[Any]]:
        q = self._adapter.quote
        ph = self._adapter.placeholder
        clauses: list[str] = []
        params: list[Any] = []
        for col, value in (filters or {}).items():
            if value is None:
                clauses.append(f"{q(col)} IS NULL")
            else:
                clauses.append(f"{q(col)} = {ph}")
                params.append(self._adapter.to_db_value(value))
        if spec.soft_delete_column and not include_deleted:
            clauses.append(f"{q(spec.soft_delete_column)} = {ph}")
            params.append(self._adapter.to_db_bool(True))
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _order(self, spec: TableSpec, order_by: str | Sequence[str] | None) -> str:
        if order_by is None:
            order_by = []
        elif isinstance(order_by, str):
            order_by = [order_by]
        q = self._adapter.quote
        parts: list[str] = []
        cols: set[str] = set()
        for item in order_by:
            desc = item.startswith("-")
            col = item[1:] if desc else item
            cols.add(col)
            parts.append(f"{q(col)} {'DESC' if desc else 'ASC'}")
        if spec.id_column not in cols:
            parts.append(f"{q(spec.id_column)} ASC")
        return " ORDER BY " + ", ".join(parts)

    def _select(self, conn: Any, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        cur = execute(conn, sql, params)
        try:
            rows = cursor_to_dicts(cur)
        finally:
            cur.close()
        conn.commit()
        return rows

    def _write(self, conn: Any, sql: str, params: list[Any]) -> int:
        self._adapter.begin(conn)
        try:
            cur = execute(conn, sql, params)
            try:
                n = cur.rowcount
            finally:
                cur.close()
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        return n

    def _fetch_by_id(self, conn: Any, spec: TableSpec, id: Any) -> dict[str, Any] | None:
        q = self._adapter.quote
        sql = (
            f"SELECT * FROM {q(spec.name)} "
            f"WHERE {q(spec.id_column)} = {self._adapter.placeholder}"
        )
        rows = self._select(conn, sql, [id])
        return self._normalize(spec, rows[0]) if rows else None

    def _normalize(self, spec: TableSpec, row: dict[str, Any]) -> dict[str, Any]:
        booleans = set(spec.boolean_columns)
        if spec.soft_delete_column:
            booleans.add(spec.soft_delete_column)
        for col in booleans & row.keys():
            row[col] = self._adapter.from_db_bool(row[col])
        for col in spec.datetime_columns & row.keys():
            row[col] = self._adapter.from_db_datetime(row[col])
        for col in spec.decimal_columns & row.keys():
            row[col] = self._adapter.from_db_decimal(row[col])
        return row
