"""
Error taxonomy for backend resolution, pooling, migrations and seeding.

| Error               | Propagation                                        |
|---------------------|----------------------------------------------------|
| ConfigurationError  | fatal at startup, no retry                         |
| ConnectivityError   | per descriptor; selector tries the next one        |
| NoBackendAvailable  | fatal: every descriptor probed unhealthy           |
| SchemaConflictError | benign "already exists"; logged, ledger updated    |
| MigrationFailure    | fatal; runner halts, no ledger row for the version |
| DriftWarning        | warning only                                       |
| SeedDuplicate       | benign natural-key collision; counted              |
| PoolExhausted       | transient; caller decides on retry/backoff         |
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dbanchor.models import MigrationReport, ProbeResult


class DbAnchorError(Exception):
    """Base class for persistence-layer errors."""


class ConfigurationError(DbAnchorError):
    """A required connection parameter is missing or invalid."""


class ConnectivityError(DbAnchorError):
    """Opening a connection to one backend failed."""

    def __init__(self, descriptor_name: str, cause: BaseException) -> None:
        self.descriptor_name = descriptor_name
        self.cause = cause
        super().__init__(
            f"cannot connect to {descriptor_name}: {type(cause).__name__}: {cause}"
        )


class NoBackendAvailable(DbAnchorError):
    """Every configured descriptor probed unhealthy."""

    def __init__(self, probes: "list[ProbeResult]") -> None:
        self.probes = list(probes)
        tried = ", ".join(f"{p.name}={p.status.value}" for p in self.probes) or "none"
        super().__init__(f"no backend available (tried: {tried})")


class SchemaConflictError(DbAnchorError):
    """A migration hit an "object already exists" class of error."""

    def __init__(self, version: str, cause: BaseException) -> None:
        self.version = version
        self.cause = cause
        super().__init__(f"migration {version}: object already exists ({cause})")


class MigrationFailure(DbAnchorError):
    """Non-benign migration error; the runner stops at this version."""

    def __init__(
        self,
        version: str | None,
        cause: BaseException | str,
        report: "MigrationReport | None" = None,
    ) -> None:
        self.version = version
        self.cause = cause
        self.report = report
        where = f"migration {version}" if version is not None else "migration runner"
        super().__init__(f"{where} failed: {cause}")


class DriftWarning(UserWarning):
    """An applied version's script body no longer matches its ledger checksum."""

    def __init__(self, version: str, recorded: str, current: str) -> None:
        self.version = version
        self.recorded = recorded
        self.current = current
        super().__init__(
            f"migration {version} changed after it was applied "
            f"(ledger {recorded[:12]}, script {current[:12]})"
        )


class SeedDuplicate(DbAnchorError):
    """A seed row's natural key is already present."""

    def __init__(self, table: str, key: Any) -> None:
        self.table = table
        self.key = key
        super().__init__(f"{table}: {key!r} already seeded")


class PoolExhausted(DbAnchorError):
    """No connection became available before the acquire timeout."""

    retryable = True

    def __init__(self, timeout: float, reason: str | None = None) -> None:
        self.timeout = timeout
        msg = reason or f"no connection available within {timeout:.3f}s"
        super().__init__(msg)


class PoolClosedError(DbAnchorError):
    """The pool is closed or draining and hands out no connections."""
