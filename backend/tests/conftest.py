from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from dbanchor.core.config import DEFAULT_MIGRATIONS_DIR
from dbanchor.core.migrations import MigrationRunner, scripts_for
from dbanchor.core.pool import PoolManager
from dbanchor.core.selector import BackendHandle, BackendSelector
from dbanchor.models import BackendDescriptor, BackendKindEnum, DialectEnum


def sqlite_descriptor(path: Path | str, kind: BackendKindEnum = BackendKindEnum.EMBEDDED, priority: int = 0) -> BackendDescriptor:
    return BackendDescriptor(
        kind=kind,
        dialect=DialectEnum.SQLITE,
        priority=priority,
        path=str(path),
    )


def small_pool(descriptor: BackendDescriptor) -> PoolManager:
    return PoolManager(
        descriptor,
        size=3,
        min_idle=1,
        max_waiters=8,
        acquire_timeout=2.0,
        idle_timeout=60.0,
        max_age=600.0,
        leak_timeout=60.0,
        leak_grace=10.0,
        start_reaper=False,
    )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "embedded.db"


@pytest.fixture
def selector(db_path: Path) -> Iterator[BackendSelector]:
    sel = BackendSelector(
        [sqlite_descriptor(db_path)],
        probe_timeout=2.0,
        pool_factory=small_pool,
        drain_timeout=0.0,
    )
    yield sel
    sel.close()


@pytest.fixture
def handle(selector: BackendSelector) -> BackendHandle:
    return selector.resolve()


@pytest.fixture
def migrated_handle(handle: BackendHandle) -> BackendHandle:
    MigrationRunner(handle, lock_timeout=2.0).apply(
        scripts_for(DialectEnum.SQLITE, DEFAULT_MIGRATIONS_DIR)
    )
    return handle


@pytest.fixture
def client(selector: BackendSelector) -> Iterator[TestClient]:
    """App bound to a throwaway sqlite backend; lifespan migrates and seeds it."""
    from dbanchor.main import app

    with patch(
        "dbanchor.main.BackendSelector.from_settings", return_value=selector
    ):
        with TestClient(app) as c:
            yield c
