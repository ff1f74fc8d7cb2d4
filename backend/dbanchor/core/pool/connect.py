"""
Connection helpers for backend descriptors.

The driver (psycopg, pymysql, sqlite3) is picked by the descriptor's dialect
adapter; callers only ever see a DB-API connection.
"""

from typing import Any

from dbanchor.core.dialects import get_adapter
from dbanchor.core.exceptions import ConnectivityError
from dbanchor.core.sql import cursor_to_dicts, execute
from dbanchor.models import BackendDescriptor

__all__ = ["connect", "close_quiet", "cursor_to_dicts", "execute"]


def connect(descriptor: BackendDescriptor, *, timeout: float) -> Any:
    """
    Open a fresh connection for *descriptor*.

    Driver errors are wrapped in ConnectivityError; ``timeout`` is handed to
    the driver's connect timeout (whole seconds for the network drivers).
    """
    adapter = get_adapter(descriptor.dialect)
    try:
        return adapter.connect(descriptor, timeout=timeout)
    except Exception as e:
        raise ConnectivityError(descriptor.name, e) from e


def close_quiet(conn: Any) -> None:
    try:
        conn.close()
    except Exception:
        pass
