"""Repository pattern for all caseforge store operations.

Single interface for: collections, records, search index provisioning,
unordered bulk inserts, FTS5 search and vec search. Every record write is
mirrored into all search indexes of its collection inside one savepoint, so a
record is never visible in the table without its index entries (or with an
embedding but no embedding metadata).
"""

from __future__ import annotations

import json
import re
import sqlite3
from dataclasses import dataclass, field

from caseforge.db.indexes import (
    ensure_fts_table,
    ensure_vec_table,
    index_table_name,
    validate_fts_fields,
)
from caseforge.db.models import EmbeddingMetadata, FuzzyConfig, Record, SearchIndex

_RECORD_COLUMNS = (
    "_id, collection, record_id, title, fields, source_file, "
    "embedding, embedding_metadata, created_at"
)
# Core schema columns that can be filtered or faceted directly.
_CORE_FIELDS = {"id": "record_id", "title": "title", "sourceFile": "source_file"}


@dataclass
class BulkWriteResult:
    """Outcome of one unordered bulk insert.

    Attributes:
        inserted: Number of documents written.
        failed: Number of documents rejected.
        store_ids: Store ids of the inserted documents, in input order.
        errors: ``(input position, message)`` for each rejected document.
    """

    inserted: int = 0
    failed: int = 0
    store_ids: list[int] = field(default_factory=list)
    errors: list[tuple[int, str]] = field(default_factory=list)


class Repository:
    """Data access layer for all caseforge store entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see caseforge.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def create_collection(self, name: str) -> bool:
        """Create collection *name*. Returns False if it already existed."""
        if not name.strip():
            raise ValueError("collection name must not be empty")
        cur = self._conn.execute(
            "INSERT OR IGNORE INTO collections (name) VALUES (?)", (name,)
        )
        self._conn.commit()
        return cur.rowcount == 1

    def collection_exists(self, name: str) -> bool:
        return (
            self._conn.execute(
                "SELECT 1 FROM collections WHERE name = ?", (name,)
            ).fetchone()
            is not None
        )

    def list_collections(self) -> list[str]:
        return [
            r["name"]
            for r in self._conn.execute("SELECT name FROM collections ORDER BY name")
        ]

    def count_records(self, collection: str) -> int:
        """Return the number of records in *collection* (0 if it does not exist)."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM records WHERE collection = ?", (collection,)
        ).fetchone()[0]

    def count_embedded(self, collection: str) -> int:
        """Return the number of records in *collection* that carry an embedding."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM records WHERE collection = ? AND embedding IS NOT NULL",
            (collection,),
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Search indexes
    # ------------------------------------------------------------------

    def get_search_index(self, collection: str, name: str) -> SearchIndex | None:
        row = self._conn.execute(
            """
            SELECT collection, name, kind, table_name, definition
            FROM search_indexes WHERE collection = ? AND name = ?
            """,
            (collection, name),
        ).fetchone()
        return _row_to_index(row) if row else None

    def list_search_indexes(self, collection: str) -> list[SearchIndex]:
        rows = self._conn.execute(
            """
            SELECT collection, name, kind, table_name, definition
            FROM search_indexes WHERE collection = ? ORDER BY name
            """,
            (collection,),
        ).fetchall()
        return [_row_to_index(r) for r in rows]

    def create_lexical_index(
        self, collection: str, name: str, fields: list[str]
    ) -> SearchIndex:
        """Provision a BM25 index over *fields* and backfill it from existing records.

        Idempotent: an existing index with the same name is returned unchanged.
        """
        existing = self.get_search_index(collection, name)
        if existing is not None:
            return existing
        self._require_collection(collection)
        validate_fts_fields(fields)

        table = index_table_name("lexical", collection, name)
        ensure_fts_table(self._conn, table, fields)
        self._register_index(collection, name, "lexical", table, {"fields": fields})
        index = SearchIndex(
            name=name, collection=collection, kind="lexical", table_name=table, fields=fields
        )
        for record in self.iter_records(collection):
            self._index_lexical(index, record)
        self._conn.commit()
        return index

    def create_vector_index(
        self, collection: str, name: str, model: str, dimensions: int
    ) -> SearchIndex:
        """Provision a cosine vec0 index and backfill it from embedded records.

        Idempotent: an existing index with the same name is returned unchanged.
        """
        existing = self.get_search_index(collection, name)
        if existing is not None:
            return existing
        self._require_collection(collection)

        table = index_table_name("vector", collection, name)
        ensure_vec_table(self._conn, table, dimensions)
        self._register_index(
            collection, name, "vector", table, {"model": model, "dimensions": dimensions}
        )
        index = SearchIndex(
            name=name,
            collection=collection,
            kind="vector",
            table_name=table,
            model=model,
            dimensions=dimensions,
        )
        for record in self.iter_records(collection):
            if record.embedding is not None:
                self._index_vector(index, record)
        self._conn.commit()
        return index

    def _register_index(
        self, collection: str, name: str, kind: str, table: str, definition: dict
    ) -> None:
        self._conn.execute(
            """
            INSERT INTO search_indexes (collection, name, kind, table_name, definition)
            VALUES (?, ?, ?, ?, ?)
            """,
            (collection, name, kind, table, json.dumps(definition)),
        )

    def _require_collection(self, collection: str) -> None:
        if not self.collection_exists(collection):
            raise ValueError(f"Collection '{collection}' does not exist")

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def add_record(self, collection: str, record: Record) -> int:
        """Insert one record and sync every search index. Returns the new store id."""
        indexes = self.list_search_indexes(collection)
        store_id = self._insert_record(collection, record, indexes)
        self._conn.commit()
        return store_id

    def bulk_insert(
        self, collection: str, records: list[Record], ordered: bool = False
    ) -> BulkWriteResult:
        """Insert *records* in one transaction, one savepoint per document.

        With ``ordered=False`` a rejected document is rolled back alone and
        the rest of the group is still written. With ``ordered=True`` the
        first rejection stops the write; documents before it are kept and
        the remainder counts as failed.
        """
        result = BulkWriteResult()
        if not records:
            return result

        self._require_collection(collection)
        indexes = self.list_search_indexes(collection)
        if self._conn.in_transaction:
            self._conn.commit()
        self._conn.execute("BEGIN")
        try:
            for pos, record in enumerate(records):
                self._conn.execute("SAVEPOINT doc")
                try:
                    store_id = self._insert_record(collection, record, indexes)
                except (sqlite3.Error, ValueError, TypeError) as exc:
                    if _is_interrupt(exc):
                        raise
                    self._conn.execute("ROLLBACK TO SAVEPOINT doc")
                    self._conn.execute("RELEASE SAVEPOINT doc")
                    record.store_id = None
                    result.failed += 1
                    result.errors.append((pos, str(exc)))
                    if ordered:
                        remaining = len(records) - pos - 1
                        result.failed += remaining
                        break
                    continue
                self._conn.execute("RELEASE SAVEPOINT doc")
                result.inserted += 1
                result.store_ids.append(store_id)
            self._conn.commit()
        except BaseException:
            self._conn.rollback()
            raise
        return result

    def _insert_record(
        self, collection: str, record: Record, indexes: list[SearchIndex]
    ) -> int:
        if (record.embedding is None) != (record.embedding_metadata is None):
            raise ValueError(
                f"record '{record.record_id}': embedding and embedding metadata "
                "must be written together"
            )
        embedding = json.dumps(record.embedding) if record.embedding is not None else None
        metadata = (
            record.embedding_metadata.to_json()
            if record.embedding_metadata is not None
            else None
        )
        cur = self._conn.execute(
            """
            INSERT INTO records
                (collection, record_id, title, fields, source_file, embedding, embedding_metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                collection,
                record.record_id,
                record.title,
                json.dumps(record.fields),
                record.source_file,
                embedding,
                metadata,
            ),
        )
        store_id = cur.lastrowid
        record.store_id = store_id
        for index in indexes:
            if index.kind == "lexical":
                self._index_lexical(index, record)
            elif record.embedding is not None:
                self._index_vector(index, record)
        return store_id

    def _index_lexical(self, index: SearchIndex, record: Record) -> None:
        columns = ", ".join(f'"{f}"' for f in index.fields)
        placeholders = ", ".join("?" * (len(index.fields) + 1))
        self._conn.execute(
            f"INSERT INTO {index.table_name}(rowid, {columns}) VALUES ({placeholders})",
            (record.store_id, *[record.get(f) for f in index.fields]),
        )

    def _index_vector(self, index: SearchIndex, record: Record) -> None:
        self._conn.execute(
            f"INSERT INTO {index.table_name}(rowid, embedding) VALUES (?, ?)",
            (record.store_id, json.dumps(record.embedding)),
        )

    def get_record(self, store_id: int) -> Record | None:
        """Return a record by its store id, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM records WHERE _id = ?", (store_id,)
        ).fetchone()
        return _row_to_record(row) if row else None

    def iter_records(self, collection: str):
        """Yield every record of *collection* in store order."""
        cur = self._conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM records WHERE collection = ? ORDER BY _id",
            (collection,),
        )
        for row in cur.fetchall():
            yield _row_to_record(row)

    def distinct(self, collection: str, field_name: str) -> list[str]:
        """Return the sorted, non-empty distinct values of *field_name*."""
        if field_name in _CORE_FIELDS:
            sql = f"SELECT DISTINCT {_CORE_FIELDS[field_name]} FROM records WHERE collection = ?"
            params: tuple = (collection,)
        else:
            sql = "SELECT DISTINCT json_extract(fields, ?) FROM records WHERE collection = ?"
            params = (f'$."{field_name}"', collection)
        values = {r[0] for r in self._conn.execute(sql, params).fetchall()}
        return sorted(str(v) for v in values if v not in (None, ""))

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def search_lexical(
        self,
        index: SearchIndex,
        query: str,
        fields: list[str] | None = None,
        fuzzy: FuzzyConfig | None = None,
        limit: int = 10,
    ) -> list[tuple[Record, float]]:
        """BM25 full-text search. Returns (record, lexical score) best-first.

        bm25() returns negative values where lower is better; the score is
        negated so that higher means more relevant.
        """
        match = build_match_expression(query, index.fields, fields, fuzzy)
        if match is None:
            return []
        rows = self._conn.execute(
            f"""
            SELECT rowid, bm25({index.table_name}) AS score
            FROM {index.table_name} WHERE {index.table_name} MATCH ?
            ORDER BY score, rowid LIMIT ?
            """,
            (match, limit),
        ).fetchall()
        return self._hydrate([(r["rowid"], -r["score"]) for r in rows])

    # ------------------------------------------------------------------
    # Vec search
    # ------------------------------------------------------------------

    def search_vector(
        self, index: SearchIndex, embedding: list[float], limit: int = 10
    ) -> list[tuple[Record, float]]:
        """Nearest-neighbour search. Returns (record, vector score) best-first.

        The vec0 table uses cosine distance in [0, 2]; the score is mapped to
        ``1 - distance / 2`` so identical vectors score 1.0.
        """
        rows = self._conn.execute(
            f"""
            SELECT rowid, distance FROM {index.table_name}
            WHERE embedding MATCH ? AND k = ? ORDER BY distance
            """,
            (json.dumps(embedding), limit),
        ).fetchall()
        return self._hydrate([(r["rowid"], 1.0 - r["distance"] / 2.0) for r in rows])

    def _hydrate(self, hits: list[tuple[int, float]]) -> list[tuple[Record, float]]:
        results: list[tuple[Record, float]] = []
        for store_id, score in hits:
            record = self.get_record(store_id)
            if record is not None:
                results.append((record, score))
        return results


# ------------------------------------------------------------------
# FTS5 query construction
# ------------------------------------------------------------------


def build_match_expression(
    query: str,
    index_fields: list[str],
    fields: list[str] | None = None,
    fuzzy: FuzzyConfig | None = None,
) -> str | None:
    """Build an FTS5 MATCH expression: OR of quoted terms, optional column filter.

    Returns None if *query* contains no searchable terms.
    """
    terms = re.findall(r"\w+", query.casefold())
    if not terms:
        return None
    parts: list[str] = []
    for term in dict.fromkeys(terms):
        if fuzzy is not None:
            parts.append(f'"{fuzzy.widen(term)}"*')
        else:
            parts.append(f'"{term}"')
    expr = " OR ".join(parts)
    if fields:
        unknown = [f for f in fields if f not in index_fields]
        if unknown:
            raise ValueError(f"Fields {unknown} are not part of the lexical index")
        columns = " ".join(fields)
        expr = f"{{{columns}}} : ({expr})"
    return expr


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_record(row: sqlite3.Row) -> Record:
    return Record(
        store_id=row["_id"],
        record_id=row["record_id"],
        title=row["title"],
        fields=json.loads(row["fields"]),
        source_file=row["source_file"],
        embedding=json.loads(row["embedding"]) if row["embedding"] else None,
        embedding_metadata=(
            EmbeddingMetadata.from_json(row["embedding_metadata"])
            if row["embedding_metadata"]
            else None
        ),
        created_at=row["created_at"],
    )


def _row_to_index(row: sqlite3.Row) -> SearchIndex:
    definition = json.loads(row["definition"])
    return SearchIndex(
        name=row["name"],
        collection=row["collection"],
        kind=row["kind"],
        table_name=row["table_name"],
        fields=definition.get("fields", []),
        model=definition.get("model"),
        dimensions=definition.get("dimensions"),
    )


def _is_interrupt(exc: BaseException) -> bool:
    """True for the error raised when Connection.interrupt() aborts a statement."""
    return isinstance(exc, sqlite3.OperationalError) and str(exc) == "interrupted"
