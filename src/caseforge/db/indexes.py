"""Search index table management: FTS5 (lexical) and sqlite-vec (vector)."""

from __future__ import annotations

import re
import sqlite3

# FTS5 reserves these as column names.
_FTS_RESERVED = frozenset({"rank", "rowid", "oid", "_rowid_"})
_COLUMN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def to_slug(name: str) -> str:
    """Convert an arbitrary collection/index/model name to a table-name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "Vector Index" -> "vector_index"
    """
    return re.sub(r"[^a-z0-9]", "_", name.lower())


def index_table_name(kind: str, collection: str, index_name: str) -> str:
    """Return the backing table name for a search index."""
    prefix = {"lexical": "fts", "vector": "vec"}[kind]
    return f"{prefix}_{to_slug(collection)}__{to_slug(index_name)}"


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    return (
        conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        is not None
    )


def validate_fts_fields(fields: list[str]) -> None:
    """Raise ValueError if *fields* cannot be used as FTS5 column names."""
    if not fields:
        raise ValueError("a lexical index needs at least one field")
    for f in fields:
        if not _COLUMN_RE.fullmatch(f) or f.lower() in _FTS_RESERVED:
            raise ValueError(f"Invalid lexical index field '{f}'")
    if len({f.lower() for f in fields}) != len(fields):
        raise ValueError(f"Duplicate lexical index fields: {fields}")


def ensure_fts_table(conn: sqlite3.Connection, table: str, fields: list[str]) -> bool:
    """Create an FTS5 table with one column per field. Returns True if created."""
    validate_fts_fields(fields)
    if table_exists(conn, table):
        return False
    columns = ", ".join(f'"{f}"' for f in fields)
    conn.execute(
        f"CREATE VIRTUAL TABLE {table} USING fts5({columns}, tokenize='porter ascii')"
    )
    return True


def ensure_vec_table(conn: sqlite3.Connection, table: str, dimensions: int) -> bool:
    """Create a cosine-distance vec0 table if missing. Returns True if created.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        table: Table name (use index_table_name() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).
    """
    if not re.fullmatch(r"[a-z0-9_]+", table):
        raise ValueError(
            f"Invalid table name '{table}' — use index_table_name() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")
    if table_exists(conn, table):
        return False
    conn.execute(
        f"CREATE VIRTUAL TABLE {table} USING vec0("
        f"embedding float[{dimensions}] distance_metric=cosine)"
    )
    return True
