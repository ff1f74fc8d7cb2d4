"""
Health-check helpers for liveness and readiness probes.

Liveness:  is the process alive and not deadlocked?  (cheap, no I/O)
Readiness: can it serve traffic?  (backend resolved, pool hands out a live
connection, expected tables present)
"""

import logging
from collections.abc import Iterable
from typing import Any

from dbanchor.core.config import settings
from dbanchor.core.pool import health_check
from dbanchor.core.verify import SchemaVerifier
from dbanchor.models import SchemaExpectation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Individual dependency checks
# ---------------------------------------------------------------------------


def check_pool(handle: Any) -> bool:
    """Borrow a connection from the active pool and ping it. Returns True if ok."""
    try:
        with handle.connection(timeout=settings.DB_PROBE_TIMEOUT) as conn:
            return health_check(conn, handle.dialect)
    except Exception:
        logger.warning("Pool check failed for %s", handle.descriptor.name, exc_info=True)
        return False


def check_schema(handle: Any, expectations: Iterable[SchemaExpectation]) -> bool:
    """Verify that every expected table exists."""
    try:
        return SchemaVerifier(handle).verify(expectations).all_ok
    except Exception:
        logger.warning("Schema check failed, treating as unhealthy", exc_info=True)
        return False


# ---------------------------------------------------------------------------
# Composite probes
# ---------------------------------------------------------------------------


def liveness_check() -> tuple[bool, list[str]]:
    """
    Lightweight liveness probe: just confirms the Python process is responsive.
    No I/O, no DB calls.  Return format matches readiness_check for consistency.
    """
    return (True, [])


def readiness_check(
    handle: Any | None, expectations: Iterable[SchemaExpectation]
) -> tuple[bool, list[str]]:
    """
    Run pool + schema checks against the active handle.
    Returns (ok, list of failure messages).
    """
    if handle is None:
        return (False, ["no_backend"])

    failures: list[str] = []
    if not check_pool(handle):
        failures.append("database")
    elif not check_schema(handle, expectations):
        failures.append("schema_incomplete")

    return (len(failures) == 0, failures)
