"""
Startup control flow:

    resolve backend -> warm pool -> apply migrations -> seed reference data
    -> verify schema

After ``bootstrap`` returns, the handle is ready for the query façade.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from dbanchor.core.config import Settings, settings
from dbanchor.core.migrations import MigrationRunner, scripts_for
from dbanchor.core.selector import BackendHandle, BackendSelector
from dbanchor.core.verify import SchemaVerifier
from dbanchor.initial_data import SCHEMA_EXPECTATIONS, seed_reference_data
from dbanchor.models import MigrationReport, SchemaReport, SeedReport

logger = logging.getLogger(__name__)


@dataclass
class BootstrapResult:
    handle: BackendHandle
    migrations: MigrationReport | None = None
    seeds: list[SeedReport] = field(default_factory=list)
    schema: SchemaReport | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "backend": self.handle.descriptor.public_dict(),
            "migrations": self.migrations.summary() if self.migrations else None,
            "seed": {
                r.table: {
                    "inserted": r.inserted,
                    "already_present": r.already_present,
                    "expected": r.expected,
                    "found": r.found,
                }
                for r in self.seeds
            },
            "schema": self.schema.tables if self.schema else None,
            "schema_ok": self.schema.all_ok if self.schema else None,
        }


def bootstrap(
    selector: BackendSelector,
    cfg: Settings = settings,
    *,
    migrate: bool = True,
    seed: bool = True,
) -> BootstrapResult:
    """
    Run the startup sequence. NoBackendAvailable and MigrationFailure
    propagate; a missing table is only reported.
    """
    handle = selector.resolve()
    handle.pool.warm()
    result = BootstrapResult(handle=handle)
    if migrate:
        runner = MigrationRunner(handle, lock_timeout=cfg.DB_MIGRATION_LOCK_TIMEOUT)
        result.migrations = runner.apply(scripts_for(handle.dialect, cfg.MIGRATIONS_DIR))
    if seed:
        result.seeds = seed_reference_data(handle)
    result.schema = SchemaVerifier(handle).verify(SCHEMA_EXPECTATIONS)
    logger.info(
        "Bootstrap complete on %s (schema %s)",
        handle.descriptor.name,
        "ok" if result.schema.all_ok else "incomplete",
    )
    return result
