"""
Versioned SQL migrations tracked in a ledger table inside the active backend.

Scripts live in ``MIGRATIONS_DIR/<dialect>/NNN_description.sql``. Each is
applied once, in ascending version order, together with its ledger row.
Errors are classified in one place (``MigrationRunner._classify``):
"already exists" conflicts are benign, everything else halts the run.
"""

import logging
import re
import warnings
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dbanchor.core.config import settings
from dbanchor.core.exceptions import (
    ConfigurationError,
    DriftWarning,
    MigrationFailure,
    SchemaConflictError,
)
from dbanchor.core.sql import execute, split_statements
from dbanchor.models import (
    DialectEnum,
    MigrationRecord,
    MigrationReport,
    MigrationScript,
    MigrationStatus,
)

logger = logging.getLogger(__name__)

LEDGER_TABLE = "schema_migrations"

_SCRIPT_NAME_RE = re.compile(r"^(\d+)_([\w\-]+)\.sql$")
_SAVEPOINT = "dbanchor_stmt"


def version_key(versions: Iterable[str]) -> Callable[[str], Any]:
    """Integer ordering when every version is numeric, lexicographic otherwise."""
    if all(v.isdigit() for v in versions):
        return int
    return str


def sort_scripts(scripts: Iterable[MigrationScript]) -> list[MigrationScript]:
    """Ascending version order. Duplicate versions raise ConfigurationError."""
    items = list(scripts)
    key = version_key(s.version for s in items)
    seen: dict[Any, str] = {}
    for s in items:
        k = key(s.version)
        if k in seen:
            raise ConfigurationError(
                f"duplicate migration version: {seen[k]!r} and {s.version!r}"
            )
        seen[k] = s.version
    return sorted(items, key=lambda s: key(s.version))


def load_scripts(directory: Path | str) -> list[MigrationScript]:
    """Read ``NNN_description.sql`` files from *directory*, sorted by version."""
    path = Path(directory)
    if not path.is_dir():
        raise ConfigurationError(f"migrations directory not found: {path}")
    scripts: list[MigrationScript] = []
    for file in sorted(path.iterdir()):
        if not file.is_file() or file.suffix != ".sql":
            continue
        m = _SCRIPT_NAME_RE.match(file.name)
        if not m:
            logger.warning("Ignoring migration file with unexpected name: %s", file.name)
            continue
        scripts.append(
            MigrationScript(
                version=m.group(1),
                name=m.group(2),
                body=file.read_text(encoding="utf-8"),
            )
        )
    return sort_scripts(scripts)


def scripts_for(dialect: DialectEnum, base: Path | str | None = None) -> list[MigrationScript]:
    root = Path(base) if base is not None else settings.MIGRATIONS_DIR
    return load_scripts(root / dialect.value)


class MigrationRunner:
    """Applies pending scripts through the handle's pool under a migration lock."""

    def __init__(
        self,
        handle: Any,
        *,
        lock_timeout: float | None = None,
        ledger_table: str = LEDGER_TABLE,
    ) -> None:
        self._handle = handle
        self._adapter = handle.adapter
        self._lock_timeout = (
            settings.DB_MIGRATION_LOCK_TIMEOUT if lock_timeout is None else lock_timeout
        )
        self._ledger = ledger_table
        self._ledger_sql = self._adapter.quote(ledger_table)

    def apply(self, scripts: Sequence[MigrationScript]) -> MigrationReport:
        """
        Apply every script whose version is not yet in the ledger.

        Raises MigrationFailure (carrying the partial report) on the first
        non-benign error or when the lock cannot be taken in time; later
        versions are not attempted and the failed version gets no ledger row.
        """
        ordered = sort_scripts(scripts)
        report = MigrationReport()
        with self._handle.connection() as conn:
            try:
                report.lock_waited = self._adapter.acquire_migration_lock(
                    conn, self._ledger, self._lock_timeout
                )
            except TimeoutError as e:
                report.error = str(e)
                logger.error("Migration lock not acquired: %s", e)
                raise MigrationFailure(None, e, report) from e
            if report.lock_waited:
                logger.info("Another instance held the migration lock; re-reading ledger")
            try:
                self._run(conn, ordered, report)
            except MigrationFailure as e:
                if report.error is None:
                    report.error = str(e.cause)
                e.report = report
                raise
            finally:
                try:
                    self._adapter.release_migration_lock(conn, self._ledger)
                except Exception:
                    logger.warning("Could not release migration lock", exc_info=True)
        logger.info(
            "Migrations: %d applied, %d already applied, %d with benign conflicts",
            len(report.applied),
            len(report.skipped),
            len(report.skipped_benign),
        )
        return report

    def status(self, scripts: Sequence[MigrationScript]) -> MigrationStatus:
        """Compare scripts with the ledger without applying anything."""
        ordered = sort_scripts(scripts)
        with self._handle.connection() as conn:
            if self._adapter.table_exists(conn, self._ledger):
                applied = {r.version: r for r in self._read_ledger(conn)}
            else:
                applied = {}
        result = MigrationStatus()
        for script in ordered:
            record = applied.get(script.version)
            if record is None:
                result.pending.append(script.version)
                continue
            result.applied.append(script.version)
            if record.checksum != script.checksum:
                result.drift.append(script.version)
        known = {s.version for s in ordered}
        unknown = [v for v in applied if v not in known]
        result.unknown = sorted(unknown, key=version_key(unknown))
        return result

    def ledger(self) -> list[MigrationRecord]:
        """Ledger rows in version order (empty before the first run)."""
        with self._handle.connection() as conn:
            if not self._adapter.table_exists(conn, self._ledger):
                return []
            records = self._read_ledger(conn)
        by_version = {r.version: r for r in records}
        key = version_key(by_version)
        return [by_version[v] for v in sorted(by_version, key=key)]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, conn: Any, ordered: list[MigrationScript], report: MigrationReport) -> None:
        self._ensure_ledger(conn)
        # Read after taking the lock: a concurrent winner's rows are visible.
        applied = {r.version: r.checksum for r in self._read_ledger(conn)}
        for script in ordered:
            recorded = applied.get(script.version)
            if recorded is not None:
                if recorded != script.checksum:
                    self._drift(script, recorded)
                    report.drift.append(script.version)
                report.skipped.append(script.version)
                continue
            try:
                conflicts = self._apply_one(conn, script)
            except MigrationFailure as e:
                report.failed = script.version
                report.error = str(e.cause)
                logger.error("Migration %s failed, halting: %s", script.version, e.cause)
                raise
            if conflicts:
                report.skipped_benign.append(script.version)
            else:
                report.applied.append(script.version)
                logger.info("Applied migration %s (%s)", script.version, script.name)

    def _apply_one(self, conn: Any, script: MigrationScript) -> list[SchemaConflictError]:
        conflicts: list[SchemaConflictError] = []
        self._adapter.begin(conn)
        try:
            for statement in split_statements(script.body):
                try:
                    self._execute_statement(conn, statement)
                except Exception as e:
                    err = self._classify(script.version, e)
                    if isinstance(err, MigrationFailure):
                        raise err from e
                    logger.warning("%s; continuing", err)
                    conflicts.append(err)
            self._adapter.insert_row(
                conn,
                self._ledger,
                {
                    "version": script.version,
                    "checksum": script.checksum,
                    "applied_at": datetime.now(timezone.utc),
                },
            )
            conn.commit()
        except MigrationFailure:
            _rollback_quiet(conn)
            raise
        except Exception as e:
            _rollback_quiet(conn)
            raise MigrationFailure(script.version, e) from e
        return conflicts

    def _execute_statement(self, conn: Any, statement: str) -> None:
        if not self._adapter.transactional_ddl:
            execute(conn, statement).close()
            return
        # A failed statement must not poison the rest of the transaction.
        execute(conn, f"SAVEPOINT {_SAVEPOINT}").close()
        try:
            execute(conn, statement).close()
        except Exception:
            execute(conn, f"ROLLBACK TO SAVEPOINT {_SAVEPOINT}").close()
            raise
        execute(conn, f"RELEASE SAVEPOINT {_SAVEPOINT}").close()

    def _classify(
        self, version: str, exc: BaseException
    ) -> SchemaConflictError | MigrationFailure:
        if self._adapter.is_already_exists(exc):
            return SchemaConflictError(version, exc)
        return MigrationFailure(version, exc)

    def _ensure_ledger(self, conn: Any) -> None:
        self._adapter.begin(conn)
        try:
            execute(conn, self._adapter.ledger_ddl(self._ledger)).close()
            conn.commit()
        except Exception as e:
            _rollback_quiet(conn)
            raise MigrationFailure(None, e) from e

    def _read_ledger(self, conn: Any) -> list[MigrationRecord]:
        cur = execute(
            conn, f"SELECT version, checksum, applied_at FROM {self._ledger_sql}"
        )
        try:
            rows = cur.fetchall()
        finally:
            cur.close()
        conn.commit()
        return [
            MigrationRecord(
                version=str(version),
                checksum=str(checksum).strip(),
                applied_at=self._adapter.from_db_datetime(applied_at),
            )
            for version, checksum, applied_at in rows
        ]

    def _drift(self, script: MigrationScript, recorded: str) -> None:
        warning = DriftWarning(script.version, recorded, script.checksum)
        logger.warning("%s", warning)
        warnings.warn(warning, stacklevel=3)


def _rollback_quiet(conn: Any) -> None:
    try:
        conn.rollback()
    except Exception:
        logger.debug("Rollback failed", exc_info=True)
