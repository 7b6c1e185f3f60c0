"""Tests for schema initialization and the migration runner."""

from __future__ import annotations

import json
import sqlite3

import pytest

from caseforge.db.connection import Database
from caseforge.db.migrations import MIGRATIONS, run_migrations
from caseforge.db.schema import CURRENT_VERSION, initialize, schema_version


def _table_columns(conn, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row["name"] for row in rows}


def _table_exists(conn, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def test_core_tables_exist(tmp_db):
    for table in ("collections", "records", "search_indexes", "schema_version"):
        assert _table_exists(tmp_db, table)


def test_records_columns(tmp_db):
    assert _table_columns(tmp_db, "records") == {
        "_id",
        "collection",
        "record_id",
        "title",
        "fields",
        "source_file",
        "embedding",
        "embedding_metadata",
        "created_at",
    }


def test_schema_version_recorded(tmp_db):
    assert schema_version(tmp_db) == CURRENT_VERSION == MIGRATIONS[-1][0]


def test_schema_version_zero_for_fresh_db(tmp_path):
    conn = Database(tmp_path / "fresh.db").connect()
    assert schema_version(conn) == 0
    conn.close()


def test_initialize_idempotent(tmp_db):
    initialize(tmp_db)
    run_migrations(tmp_db)
    rows = tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert rows == len(MIGRATIONS)


def test_embedding_without_metadata_rejected(tmp_db):
    tmp_db.execute("INSERT INTO collections (name) VALUES ('c')")
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO records (collection, record_id, embedding) VALUES (?, ?, ?)",
            ("c", "TC-1", json.dumps([0.1, 0.2])),
        )


def test_empty_record_id_rejected(tmp_db):
    tmp_db.execute("INSERT INTO collections (name) VALUES ('c')")
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute("INSERT INTO records (collection, record_id) VALUES ('c', '')")


def test_records_cascade_with_collection(tmp_db):
    tmp_db.execute("INSERT INTO collections (name) VALUES ('c')")
    tmp_db.execute("INSERT INTO records (collection, record_id) VALUES ('c', 'TC-1')")
    tmp_db.execute("DELETE FROM collections WHERE name = 'c'")
    assert tmp_db.execute("SELECT COUNT(*) FROM records").fetchone()[0] == 0
