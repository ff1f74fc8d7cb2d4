"""
Connections to the active backend: connect helpers, liveness probe and the
bounded PoolManager.
"""

from .connect import close_quiet, connect, cursor_to_dicts, execute
from .health import health_check, probe
from .manager import PoolManager

__all__ = [
    "connect",
    "close_quiet",
    "execute",
    "cursor_to_dicts",
    "health_check",
    "probe",
    "PoolManager",
]
