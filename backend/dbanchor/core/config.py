from pathlib import Path
from typing import Literal

from pydantic import HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_MIGRATIONS_DIR = PACKAGE_DIR / "migrations"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # .env one level above ./backend/
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    PROJECT_NAME: str = "dbanchor"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    SENTRY_DSN: HttpUrl | None = None
    LOG_LEVEL: str = "INFO"

    # Failover order, highest priority first.
    BACKEND_PRIORITY: str = "primary,secondary,embedded"

    # Managed network database (e.g. a hosted Postgres); usually a single URL.
    PRIMARY_URL: str | None = None
    PRIMARY_DIALECT: str | None = None
    PRIMARY_HOST: str | None = None
    PRIMARY_PORT: int | None = None
    PRIMARY_USER: str | None = None
    PRIMARY_PASSWORD: str | None = None
    PRIMARY_DB: str | None = None
    PRIMARY_SSLMODE: str | None = None

    # Local server-based database.
    SECONDARY_URL: str | None = None
    SECONDARY_DIALECT: str | None = None
    SECONDARY_HOST: str | None = None
    SECONDARY_PORT: int | None = None
    SECONDARY_USER: str | None = None
    SECONDARY_PASSWORD: str | None = None
    SECONDARY_DB: str | None = None
    SECONDARY_SSLMODE: str | None = None

    # Embedded file-backed database.
    EMBEDDED_URL: str | None = None
    EMBEDDED_PATH: str | None = None

    DB_POOL_SIZE: int = 10
    DB_POOL_MIN_IDLE: int = 1
    DB_POOL_MAX_WAITERS: int = 64
    DB_POOL_MAX_AGE_SEC: float = 1800.0
    DB_PROBE_TIMEOUT: float = 5.0
    DB_ACQUIRE_TIMEOUT: float = 10.0
    DB_IDLE_TIMEOUT: float = 300.0
    DB_LEAK_TIMEOUT: float = 600.0
    DB_LEAK_GRACE: float = 60.0
    DB_MIGRATION_LOCK_TIMEOUT: float = 300.0

    MIGRATIONS_DIR: Path = DEFAULT_MIGRATIONS_DIR
    RUN_MIGRATIONS_ON_STARTUP: bool = True
    SEED_ON_STARTUP: bool = True

    # Shared secret for operator endpoints (reconnect). Unset disables them.
    ADMIN_TOKEN: str | None = None

    @property
    def backend_priority(self) -> list[str]:
        return [
            part.strip().lower()
            for part in self.BACKEND_PRIORITY.split(",")
            if part.strip()
        ]


settings = Settings()  # type: ignore
