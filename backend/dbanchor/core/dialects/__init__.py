"""
Dialect adapters: one per supported backend, selected once per handle.

    adapter = get_adapter(descriptor.dialect)
    conn = adapter.connect(descriptor, timeout=5)
"""

from dbanchor.models import DialectEnum

from .base import DialectAdapter
from .mysql import MySQLAdapter
from .postgres import PostgresAdapter
from .sqlite import SQLiteAdapter

_ADAPTERS: dict[DialectEnum, DialectAdapter] = {
    DialectEnum.POSTGRES: PostgresAdapter(),
    DialectEnum.MYSQL: MySQLAdapter(),
    DialectEnum.SQLITE: SQLiteAdapter(),
}


def get_adapter(dialect: DialectEnum | str) -> DialectAdapter:
    try:
        return _ADAPTERS[DialectEnum(dialect)]
    except ValueError:
        raise ValueError(f"Unsupported dialect: {dialect}") from None


__all__ = [
    "DialectAdapter",
    "MySQLAdapter",
    "PostgresAdapter",
    "SQLiteAdapter",
    "get_adapter",
]
