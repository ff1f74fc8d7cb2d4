"""
Initialize-only reference data seeding, keyed on a natural key.

Rows whose key already exists are left untouched: seeding never updates
or deletes.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from dbanchor.core.exceptions import SeedDuplicate
from dbanchor.core.sql import execute
from dbanchor.models import SeedReport

logger = logging.getLogger(__name__)

# Keep IN (...) lists well below driver parameter limits.
_COUNT_CHUNK = 500


class SeedManager:
    def __init__(self, handle: Any) -> None:
        self._handle = handle
        self._adapter = handle.adapter

    def seed(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        natural_key: str,
    ) -> SeedReport:
        """
        Insert each row in its own transaction; a uniqueness violation counts
        as already present when a row with the same natural key is stored,
        otherwise it propagates. Afterwards the stored rows for the key set are
        counted and any shortfall is logged (not raised).
        """
        self._adapter.quote(table)
        self._adapter.quote(natural_key)
        keys: list[Any] = []
        for row in rows:
            if row.get(natural_key) is None:
                raise ValueError(f"{table}: seed row has no {natural_key!r}: {dict(row)!r}")
            keys.append(row[natural_key])
        distinct = list(dict.fromkeys(keys))
        report = SeedReport(table=table, expected=len(distinct))

        with self._handle.connection() as conn:
            for row in rows:
                try:
                    self._insert(conn, table, row, natural_key)
                    report.inserted += 1
                except SeedDuplicate as e:
                    logger.debug("%s", e)
                    report.already_present += 1
            report.found = self._count_keys(conn, table, natural_key, distinct)

        if not report.consistent:
            logger.warning(
                "Seed %s: expected %d rows for the key set, found %d; re-run seed to complete",
                table,
                report.expected,
                report.found,
            )
        logger.info(
            "Seeded %s: %d inserted, %d already present",
            table,
            report.inserted,
            report.already_present,
        )
        return report

    def _insert(
        self, conn: Any, table: str, row: Mapping[str, Any], natural_key: str
    ) -> None:
        self._adapter.begin(conn)
        try:
            self._adapter.insert_row(conn, table, row)
            conn.commit()
        except Exception as e:
            try:
                conn.rollback()
            except Exception:
                logger.debug("Rollback failed", exc_info=True)
            # A unique violation on another column is a real conflict.
            if self._adapter.is_unique_violation(e) and self._key_exists(
                conn, table, natural_key, row[natural_key]
            ):
                raise SeedDuplicate(table, row[natural_key]) from e
            raise

    def _key_exists(self, conn: Any, table: str, natural_key: str, key: Any) -> bool:
        sql = (
            f"SELECT 1 FROM {self._adapter.quote(table)} "
            f"WHERE {self._adapter.quote(natural_key)} = {self._adapter.placeholder}"
        )
        cur = execute(conn, sql, [self._adapter.to_db_value(key)])
        try:
            found = cur.fetchone() is not None
        finally:
            cur.close()
        conn.commit()
        return found

    def _count_keys(
        self, conn: Any, table: str, natural_key: str, keys: list[Any]
    ) -> int:
        total = 0
        for start in range(0, len(keys), _COUNT_CHUNK):
            chunk = keys[start : start + _COUNT_CHUNK]
            sql = (
                f"SELECT COUNT(*) FROM {self._adapter.quote(table)} "
                f"WHERE {self._adapter.quote(natural_key)} "
                f"IN ({self._adapter.placeholders(len(chunk))})"
            )
            cur = execute(conn, sql, [self._adapter.to_db_value(k) for k in chunk])
            try:
                total += int(cur.fetchone()[0])
            finally:
                cur.close()
        conn.commit()
        return total
