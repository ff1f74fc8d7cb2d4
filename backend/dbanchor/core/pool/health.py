"""
Liveness checks: ``health_check`` for a live connection, ``probe`` for a
backend descriptor (fresh, short-lived connection; never pool state).
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from dbanchor.core.dialects import get_adapter
from dbanchor.models import (
    BackendDescriptor,
    DialectEnum,
    ProbeResult,
    ProbeStatusEnum,
)

from .connect import close_quiet, connect, execute

logger = logging.getLogger(__name__)


def health_check(conn: Any, dialect: DialectEnum) -> bool:
    """
    Run the dialect's ping query and return True if no exception.
    Any transaction the ping opened is rolled back.
    """
    cur = None
    try:
        cur = execute(conn, get_adapter(dialect).ping_sql)
        cur.fetchone()
        return True
    except Exception:
        return False
    finally:
        if cur is not None:
            try:
                cur.close()
            except Exception:
                pass
        try:
            conn.rollback()
        except Exception:
            pass


def probe(
    descriptor: BackendDescriptor,
    timeout: float,
    *,
    connect_fn: Callable[..., Any] = connect,
) -> ProbeResult:
    """
    Connect, ping, close. Returns healthy / unreachable / timed_out.

    The attempt runs in a daemon thread so ``timeout`` is a hard bound even
    when the driver blocks; a late connection is still closed by the worker.
    No retries here.
    """
    outcome: dict[str, str] = {}
    done = threading.Event()

    def _attempt() -> None:
        conn = None
        try:
            conn = connect_fn(descriptor, timeout=timeout)
            if not health_check(conn, descriptor.dialect):
                outcome["error"] = "liveness query failed"
        except Exception as e:
            outcome["error"] = str(e)
        finally:
            if conn is not None:
                close_quiet(conn)
            done.set()

    started = time.monotonic()
    worker = threading.Thread(
        target=_attempt, name=f"probe-{descriptor.name}", daemon=True
    )
    worker.start()
    finished = done.wait(timeout)
    elapsed_ms = round((time.monotonic() - started) * 1000, 1)

    if not finished:
        status = ProbeStatusEnum.TIMED_OUT
        error: str | None = f"no answer within {timeout}s"
    elif "error" in outcome:
        status = ProbeStatusEnum.UNREACHABLE
        error = outcome["error"]
    else:
        status = ProbeStatusEnum.HEALTHY
        error = None

    if status != ProbeStatusEnum.HEALTHY:
        logger.warning("Probe %s: %s (%s)", descriptor.name, status.value, error)
    else:
        logger.info("Probe %s: healthy in %.1f ms", descriptor.name, elapsed_ms)
    return ProbeResult(
        name=descriptor.name,
        kind=descriptor.kind,
        dialect=descriptor.dialect,
        status=status,
        elapsed_ms=elapsed_ms,
        error=error,
    )
