"""Tests for the Database connection layer."""

from __future__ import annotations

import sqlite3

from clinirag.db.connection import Database


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".clinirag.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_connect_creates_parent_directory(tmp_path):
    db_path = tmp_path / "nested" / "dir" / "store.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loads(tmp_path):
    conn = Database(tmp_path / ".clinirag.db").connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_row_factory_is_row(tmp_path):
    conn = Database(tmp_path / ".clinirag.db").connect()
    assert conn.row_factory is sqlite3.Row
    conn.close()


def test_file_db_uses_wal(tmp_path):
    conn = Database(tmp_path / ".clinirag.db").connect()
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode.lower() == "wal"


def test_in_memory_database():
    conn = Database(":memory:").connect()
    assert conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()


def test_context_manager_closes(tmp_path):
    db = Database(tmp_path / ".clinirag.db")
    with db as conn:
        conn.execute("SELECT 1")
    assert db._conn is None
