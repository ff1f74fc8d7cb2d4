"""
Persistence-layer models: backend descriptors, probe results, migration
scripts and ledger records, seed / schema reports.

Plain pydantic models; nothing here is a table. The ledger and reference
tables are created by the versioned SQL scripts under ``migrations/``.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class BackendKindEnum(str, Enum):
    """Role of a backend in the failover order."""

    PRIMARY = "primary"  # managed network database
    SECONDARY = "secondary"  # local server-based database
    EMBEDDED = "embedded"  # file-backed database


class DialectEnum(str, Enum):
    """Supported SQL dialects (postgres, mysql, sqlite)."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class ProbeStatusEnum(str, Enum):
    HEALTHY = "healthy"
    UNREACHABLE = "unreachable"
    TIMED_OUT = "timed_out"


class IdStrategyEnum(str, Enum):
    """How the surrogate key of a row is produced."""

    DATABASE = "database"  # sequence / auto-increment
    CLIENT_UUID = "client_uuid"  # generated in Python before insert


# ---------------------------------------------------------------------------
# Backend descriptors
# ---------------------------------------------------------------------------


class BackendDescriptor(BaseModel):
    """Static configuration of one backend. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    kind: BackendKindEnum
    dialect: DialectEnum
    priority: int = 0
    url: str | None = Field(default=None, repr=False)
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    path: str | None = None
    sslmode: str | None = None

    @property
    def name(self) -> str:
        return f"{self.kind.value}:{self.dialect.value}"

    def public_dict(self) -> dict[str, object]:
        """Descriptor fields safe to log or return to operators (no secrets)."""
        location: str | None
        if self.dialect == DialectEnum.SQLITE:
            location = self.path
        elif self.host:
            location = f"{self.host}:{self.port}" if self.port else self.host
        else:
            location = None
        return {
            "name": self.name,
            "kind": self.kind.value,
            "dialect": self.dialect.value,
            "priority": self.priority,
            "location": location,
            "database": self.database,
        }


class ProbeResult(BaseModel):
    name: str
    kind: BackendKindEnum
    dialect: DialectEnum
    status: ProbeStatusEnum
    elapsed_ms: float
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return self.status == ProbeStatusEnum.HEALTHY


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


def script_checksum(body: str) -> str:
    """SHA-256 of a script body with line endings normalized."""
    normalized = body.replace("\r\n", "\n").replace("\r", "\n")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class MigrationScript(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str
    name: str = ""
    body: str = Field(repr=False)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def checksum(self) -> str:
        return script_checksum(self.body)


class MigrationRecord(BaseModel):
    """One ledger row; never mutated after insertion."""

    version: str
    checksum: str
    applied_at: datetime = Field(default_factory=_utc_now)


class MigrationReport(BaseModel):
    applied: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    skipped_benign: list[str] = Field(default_factory=list)
    failed: str | None = None
    drift: list[str] = Field(default_factory=list)
    lock_waited: bool = False
    error: str | None = None

    def summary(self) -> dict[str, object]:
        return {
            "applied": len(self.applied),
            "skipped": len(self.skipped),
            "skipped_benign": len(self.skipped_benign),
            "failed": 1 if self.failed is not None else 0,
            "applied_versions": self.applied,
            "benign_versions": self.skipped_benign,
            "failed_version": self.failed,
            "drift": self.drift,
            "error": self.error,
        }


class MigrationStatus(BaseModel):
    applied: list[str] = Field(default_factory=list)
    pending: list[str] = Field(default_factory=list)
    drift: list[str] = Field(default_factory=list)
    unknown: list[str] = Field(default_factory=list)  # in ledger, no script


# ---------------------------------------------------------------------------
# Seeding / schema verification
# ---------------------------------------------------------------------------


class SeedReport(BaseModel):
    table: str
    expected: int = 0
    inserted: int = 0
    already_present: int = 0
    found: int = 0

    @property
    def consistent(self) -> bool:
        return self.found == self.expected


class SchemaExpectation(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str


class SchemaReport(BaseModel):
    tables: dict[str, Literal["ok", "missing"]] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_ok(self) -> bool:
        return all(v == "ok" for v in self.tables.values())

    @property
    def missing(self) -> list[str]:
        return [t for t, v in self.tables.items() if v == "missing"]
