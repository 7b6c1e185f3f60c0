"""Forward-only migration runner for the caseforge store schema.

Search index tables (fts_* and vec_*) are NOT migration-managed; they are
created on demand by the repository when an index is provisioned.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS collections (
    name        TEXT PRIMARY KEY,
    created_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS records (
    _id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    collection          TEXT NOT NULL REFERENCES collections(name) ON DELETE CASCADE,
    record_id           TEXT NOT NULL CHECK (length(record_id) > 0),
    title               TEXT NOT NULL DEFAULT '',
    fields              TEXT NOT NULL DEFAULT '{}' CHECK (json_valid(fields)),
    source_file         TEXT NOT NULL DEFAULT '',
    embedding           TEXT CHECK (embedding IS NULL OR json_valid(embedding)),
    embedding_metadata  TEXT CHECK (embedding_metadata IS NULL OR json_valid(embedding_metadata)),
    created_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    CHECK ((embedding IS NULL) = (embedding_metadata IS NULL))
);

CREATE INDEX IF NOT EXISTS idx_records_collection ON records(collection);

CREATE TABLE IF NOT EXISTS search_indexes (
    collection  TEXT NOT NULL REFERENCES collections(name) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    kind        TEXT NOT NULL CHECK (kind IN ('lexical', 'vector')),
    table_name  TEXT NOT NULL UNIQUE,
    definition  TEXT NOT NULL DEFAULT '{}',
    created_at  DATETIME NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (collection, name)
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
