"""Tests for get_connection() pragmas and lifecycle."""

from __future__ import annotations

import sqlite3

import pytest

from tootoo.db.connection import get_connection


class TestGetConnection:
    def test_foreign_keys_enabled(self, tmp_path):
        with get_connection(str(tmp_path / "a.db")) as conn:
            assert conn.execute("PRAGMA foreign_keys;").fetchone()[0] == 1

    def test_wal_mode(self, tmp_path):
        with get_connection(str(tmp_path / "a.db")) as conn:
            assert conn.execute("PRAGMA journal_mode;").fetchone()[0].lower() == "wal"

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "deep" / "dir" / "a.db"
        with get_connection(str(path)):
            pass
        assert path.exists()

    def test_create_false_refuses_missing_file(self, tmp_path):
        with pytest.raises(sqlite3.OperationalError):
            with get_connection(str(tmp_path / "missing.db"), create=False):
                pass
        assert not (tmp_path / "missing.db").exists()

    def test_rolls_back_on_exception(self, tmp_path):
        path = str(tmp_path / "a.db")
        with get_connection(path) as conn:
            conn.execute("CREATE TABLE t (x INTEGER);")
        with pytest.raises(RuntimeError):
            with get_connection(path) as conn:
                conn.execute("INSERT INTO t VALUES (1);")
                raise RuntimeError("boom")
        with get_connection(path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM t;").fetchone()[0] == 0
