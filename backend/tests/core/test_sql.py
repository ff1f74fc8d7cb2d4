"""Unit tests for core.sql: statement splitting and DB-API helpers."""

import sqlite3
from unittest.mock import MagicMock

import pytest

from dbanchor.core.sql import cursor_to_dicts, execute, split_statements


class TestSplitStatements:
    def test_single_statement_without_terminator(self):
        assert split_statements("SELECT 1") == ["SELECT 1"]

    def test_multiple_statements(self):
        sql = "CREATE TABLE a (id INT);\nCREATE TABLE b (id INT);\n"
        assert split_statements(sql) == ["CREATE TABLE a (id INT)", "CREATE TABLE b (id INT)"]

    def test_semicolon_inside_single_quotes(self):
        sql = "INSERT INTO t VALUES ('a;b'); SELECT 2"
        assert split_statements(sql) == ["INSERT INTO t VALUES ('a;b')", "SELECT 2"]

    def test_doubled_quote_escape(self):
        sql = "INSERT INTO t VALUES ('it''s; fine'); SELECT 1"
        assert split_statements(sql)[0] == "INSERT INTO t VALUES ('it''s; fine')"

    def test_backtick_and_double_quoted_identifiers(self):
        sql = 'SELECT `a;b`, "c;d" FROM t; SELECT 1'
        assert split_statements(sql) == ['SELECT `a;b`, "c;d" FROM t', "SELECT 1"]

    def test_dollar_quoted_body(self):
        sql = (
            "CREATE FUNCTION f() RETURNS int AS $$ BEGIN RETURN 1; END; $$ LANGUAGE plpgsql;"
            " SELECT f()"
        )
        stmts = split_statements(sql)
        assert len(stmts) == 2
        assert stmts[0].endswith("LANGUAGE plpgsql")

    def test_line_comment_semicolon_ignored(self):
        sql = "-- setup; not a statement\nSELECT 1;"
        assert split_statements(sql) == ["-- setup; not a statement\nSELECT 1"]

    def test_block_comment_semicolon_ignored(self):
        sql = "/* a; b */ SELECT 1; SELECT 2"
        assert split_statements(sql) == ["/* a; b */ SELECT 1", "SELECT 2"]

    def test_comment_only_chunks_dropped(self):
        sql = "SELECT 1;\n-- trailing comment\n;\n/* nothing */"
        assert split_statements(sql) == ["SELECT 1"]

    def test_empty(self):
        assert split_statements("") == []
        assert split_statements("  ;  ; ") == []


def test_execute_and_cursor_to_dicts_sqlite():
    conn = sqlite3.connect(":memory:")
    try:
        execute(conn, "CREATE TABLE t (id INTEGER, name TEXT)").close()
        execute(conn, "INSERT INTO t VALUES (?, ?)", [1, "a"]).close()
        cur = execute(conn, "SELECT id, name FROM t")
        assert cursor_to_dicts(cur) == [{"id": 1, "name": "a"}]
        cur.close()
    finally:
        conn.close()


def test_cursor_to_dicts_without_description():
    cur = MagicMock()
    cur.description = None
    assert cursor_to_dicts(cur) == []


def test_execute_closes_cursor_on_error():
    cur = MagicMock()
    cur.execute.side_effect = RuntimeError("boom")
    conn = MagicMock()
    conn.cursor.return_value = cur
    with pytest.raises(RuntimeError):
        execute(conn, "SELECT 1")
    cur.close.assert_called_once()


def test_execute_passes_params_as_tuple():
    cur = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value = cur
    assert execute(conn, "SELECT %s", [1]) is cur
    cur.execute.assert_called_once_with("SELECT %s", (1,))
