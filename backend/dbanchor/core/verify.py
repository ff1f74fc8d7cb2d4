"""Schema verification: report which expected tables exist. No corrective action."""

import logging
from collections.abc import Iterable
from typing import Any

from dbanchor.models import SchemaExpectation, SchemaReport

logger = logging.getLogger(__name__)


class SchemaVerifier:
    def __init__(self, handle: Any) -> None:
        self._handle = handle
        self._adapter = handle.adapter

    def verify(self, expectations: Iterable[SchemaExpectation]) -> SchemaReport:
        """One catalog lookup per table; ``{table: "ok" | "missing"}``."""
        report = SchemaReport()
        with self._handle.connection() as conn:
            for expectation in expectations:
                present = self._adapter.table_exists(conn, expectation.table)
                report.tables[expectation.table] = "ok" if present else "missing"
            conn.commit()
        if report.all_ok:
            logger.info("Schema verified: %d table(s) present", len(report.tables))
        else:
            logger.warning("Schema incomplete, missing: %s", ", ".join(report.missing))
        return report
