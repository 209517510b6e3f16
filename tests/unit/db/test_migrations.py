"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

from clinirag.db.connection import Database
from clinirag.db.migrations import MIGRATIONS, run_migrations
from clinirag.db.schema import CURRENT_VERSION, initialize


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0] == CURRENT_VERSION
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


def test_run_migrations_creates_chunks(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "chunks")
    conn.close()


def test_chunks_identity_key_is_unique(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    insert = (
        "INSERT INTO chunks (subject_id, note_id, chunk_index, content) "
        "VALUES ('p1', 'n1', 0, 'text')"
    )
    conn.execute(insert)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(insert)
    conn.close()


def test_run_migrations_does_not_create_vec_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    vec_tables = conn.execute(
        "SELECT name FROM sqlite_master WHERE name LIKE 'vec_chunks_%'"
    ).fetchall()
    assert vec_tables == []
    conn.close()


def test_run_migrations_applies_only_pending(tmp_path, monkeypatch):
    """A DB already at version 1 only gets the later migrations."""
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL, "
        "applied_at DATETIME NOT NULL DEFAULT (datetime('now')))"
    )
    conn.execute("INSERT INTO schema_version (version) VALUES (1)")
    conn.commit()

    import clinirag.db.migrations as mod

    monkeypatch.setattr(
        mod,
        "MIGRATIONS",
        [(1, "CREATE TABLE v1_marker (x INTEGER);"), (2, "CREATE TABLE v2_marker (x INTEGER);")],
    )
    run_migrations(conn)

    assert _table_exists(conn, "v2_marker")
    assert not _table_exists(conn, "v1_marker")
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
    assert versions == [1, 2]
    conn.close()


def test_initialize_delegates_to_run_migrations(tmp_path):
    conn = _fresh_conn(tmp_path)
    initialize(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()
