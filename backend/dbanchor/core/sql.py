"""
DB-API helpers shared by the pool, migration runner, seeder and façade.

Driver-agnostic: works on psycopg, pymysql and sqlite3 connections alike.
"""

from collections.abc import Sequence
from typing import Any


def execute(
    conn: Any,
    sql: str,
    params: Sequence[Any] | None = None,
) -> Any:
    """Execute SQL and return the cursor. Caller uses cursor_to_dicts(cursor) or cursor.rowcount."""
    cur = conn.cursor()
    try:
        if params is not None:
            cur.execute(sql, tuple(params))
        else:
            cur.execute(sql)
    except Exception:
        try:
            cur.close()
        except Exception:
            pass
        raise
    return cur


def cursor_to_dicts(cursor: Any) -> list[dict[str, Any]]:
    """Convert cursor result to list of dicts. Works for psycopg, pymysql and sqlite3."""
    desc = cursor.description
    if not desc:
        return []
    names = [d[0] for d in desc]
    return [dict(zip(names, row, strict=True)) for row in cursor.fetchall()]


def split_statements(sql: str) -> list[str]:
    """Split SQL into statements on ``;`` while respecting quoted strings.

    Handles single-quoted (``'...'``), double-quoted (``"..."``),
    backtick-quoted and dollar-quoted (``$$...$$``) literals plus ``--`` and
    ``/* */`` comments so that semicolons inside them are not treated as
    statement terminators. Statements consisting only of comments are dropped.
    """
    stmts: list[str] = []
    current: list[str] = []
    has_code = False
    i = 0
    length = len(sql)

    def flush() -> None:
        nonlocal current, has_code
        stmt = "".join(current).strip()
        if stmt and has_code:
            stmts.append(stmt)
        current = []
        has_code = False

    while i < length:
        ch = sql[i]

        if ch in ("'", '"', "`"):
            quote = ch
            has_code = True
            current.append(ch)
            i += 1
            while i < length:
                c = sql[i]
                current.append(c)
                if c == quote:
                    if i + 1 < length and sql[i + 1] == quote:
                        current.append(sql[i + 1])
                        i += 2
                        continue
                    i += 1
                    break
                if c == "\\" and quote != "`" and i + 1 < length:
                    current.append(sql[i + 1])
                    i += 2
                    continue
                i += 1
            continue

        if ch == "$" and i + 1 < length and sql[i + 1] == "$":
            has_code = True
            tag_end = sql.find("$$", i + 2)
            if tag_end == -1:
                current.append(sql[i:])
                i = length
            else:
                current.append(sql[i : tag_end + 2])
                i = tag_end + 2
            continue

        if ch == "-" and i + 1 < length and sql[i + 1] == "-":
            end = sql.find("\n", i)
            if end == -1:
                current.append(sql[i:])
                i = length
            else:
                current.append(sql[i : end + 1])
                i = end + 1
            continue

        if ch == "/" and i + 1 < length and sql[i + 1] == "*":
            end = sql.find("*/", i + 2)
            if end == -1:
                current.append(sql[i:])
                i = length
            else:
                current.append(sql[i : end + 2])
                i = end + 2
            continue

        if ch == ";":
            flush()
            i += 1
            continue

        if not ch.isspace():
            has_code = True
        current.append(ch)
        i += 1

    flush()
    return stmts
