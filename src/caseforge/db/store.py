"""Async document-store facade with precondition checks.

Each operation opens its own connection on a worker thread
(``asyncio.to_thread``), so a lexical and a vector query for the same request
can run concurrently. Every operation carries a timeout. A read that times out
raises StoreTimeoutError at once. A write that times out is interrupted and
awaited, so the caller learns whether it was rolled back (StoreTimeoutError)
or committed (its real BulkWriteResult).
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from caseforge.db.connection import Database
from caseforge.db.models import FuzzyConfig, Record, SearchIndex
from caseforge.db.repository import BulkWriteResult, Repository
from caseforge.db.schema import initialize
from caseforge.errors import PreconditionError, StoreTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_TIMEOUT = 30.0


class _ConnectionHandle:
    """The connection a worker thread is using, so another thread can interrupt it.

    An interrupt requested before the worker has opened its connection makes
    attach() fail, so the operation never starts.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._interrupted = False

    def attach(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            if self._interrupted:
                raise sqlite3.OperationalError("interrupted")
            self._conn = conn

    def detach(self) -> None:
        with self._lock:
            self._conn = None

    def interrupt(self) -> None:
        # sqlite3.Connection.interrupt() is the one call safe from another thread.
        with self._lock:
            self._interrupted = True
            if self._conn is not None:
                self._conn.interrupt()


class DocumentStore:
    """The document-store boundary used by ingestion and retrieval.

    Args:
        db_path: Path to the project database file.
        timeout: Per-operation timeout in seconds.
    """

    def __init__(self, db_path: Path | str, timeout: float = _DEFAULT_TIMEOUT) -> None:
        self._db = Database(db_path)
        self.timeout = timeout

    @property
    def db_path(self) -> Path:
        return self._db.db_path

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run_sync(
        self, fn: Callable[[Repository], T], handle: _ConnectionHandle | None = None
    ) -> T:
        conn = self._db.connect()
        try:
            if handle is not None:
                handle.attach(conn)
            return fn(Repository(conn))
        finally:
            if handle is not None:
                handle.detach()
            conn.close()

    def _require_database(self) -> None:
        if not self._db.exists():
            raise PreconditionError(
                PreconditionError.DATABASE,
                str(self.db_path),
                f"Database '{self.db_path}' not found",
            )

    async def _run(self, op: str, fn: Callable[[Repository], T]) -> T:
        """Run a read on a worker thread; a timeout abandons the thread."""
        self._require_database()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._run_sync, fn), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise StoreTimeoutError(
                f"Store operation '{op}' timed out after {self.timeout:.2f}s"
            ) from exc

    async def _run_write(self, op: str, fn: Callable[[Repository], T]) -> T:
        """Run a write whose outcome is always known to the caller.

        On timeout the worker's connection is interrupted and the thread is
        awaited. An interrupted write rolls back and raises StoreTimeoutError;
        a write that committed anyway returns its real result.
        """
        self._require_database()
        handle = _ConnectionHandle()
        task = asyncio.ensure_future(asyncio.to_thread(self._run_sync, fn, handle))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
        except asyncio.TimeoutError:
            handle.interrupt()

        try:
            result = await task
        except sqlite3.OperationalError as exc:
            raise StoreTimeoutError(
                f"Store operation '{op}' timed out after {self.timeout:.2f}s and was rolled back"
            ) from exc
        logger.warning(
            "Store operation '%s' overran its %.2fs timeout but completed", op, self.timeout
        )
        return result

    # ------------------------------------------------------------------
    # Provisioning (synchronous: used by the CLI and test setup)
    # ------------------------------------------------------------------

    def provision(
        self,
        collection: str,
        lexical_index: tuple[str, list[str]] | None = None,
        vector_index: tuple[str, str, int] | None = None,
    ) -> list[SearchIndex]:
        """Create the database, *collection* and the requested search indexes.

        Args:
            collection: Collection name.
            lexical_index: ``(name, fields)`` for a BM25 index, or None.
            vector_index: ``(name, model, dimensions)`` for a vector index, or None.

        Returns:
            The indexes that exist for *collection* afterwards.
        """
        conn = self._db.connect()
        try:
            initialize(conn)
            repo = Repository(conn)
            repo.create_collection(collection)
            if lexical_index is not None:
                name, fields = lexical_index
                repo.create_lexical_index(collection, name, fields)
            if vector_index is not None:
                name, model, dims = vector_index
                repo.create_vector_index(collection, name, model, dims)
            return repo.list_search_indexes(collection)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    async def validate(
        self,
        collection: str,
        index_name: str | None = None,
        require_documents: bool = False,
    ) -> SearchIndex | None:
        """Check database → collection → documents → index, in that order.

        Returns:
            The named SearchIndex (None if *index_name* is None).

        Raises:
            PreconditionError: identifying the first check that failed.
        """

        def _check(repo: Repository) -> SearchIndex | None:
            if not repo.collection_exists(collection):
                raise PreconditionError(
                    PreconditionError.COLLECTION,
                    collection,
                    f"Collection '{collection}' not found in database '{self.db_path.name}'",
                )
            if require_documents and repo.count_records(collection) == 0:
                raise PreconditionError(
                    PreconditionError.DOCUMENTS,
                    collection,
                    f"No documents found in collection '{collection}'. "
                    "Please create embeddings first.",
                )
            if index_name is None:
                return None
            index = repo.get_search_index(collection, index_name)
            if index is None:
                raise PreconditionError(
                    PreconditionError.INDEX,
                    index_name,
                    f"Search index '{index_name}' not found for collection '{collection}'",
                )
            return index

        return await self._run("validate", _check)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def lexical_search(
        self,
        collection: str,
        index_name: str,
        query: str,
        fields: list[str] | None = None,
        fuzzy: FuzzyConfig | None = None,
        limit: int = 10,
    ) -> list[tuple[Record, float]]:
        """Run a BM25 query; returns (record, lexicalScore) best-first."""
        index = await self.validate(collection, index_name, require_documents=True)
        if index.kind != "lexical":
            raise PreconditionError(
                PreconditionError.INDEX,
                index_name,
                f"Search index '{index_name}' is a {index.kind} index, not lexical",
            )
        return await self._run(
            "lexical_search",
            lambda repo: repo.search_lexical(index, query, fields, fuzzy, limit),
        )

    async def vector_search(
        self,
        collection: str,
        index_name: str,
        query_vector: list[float],
        num_candidates: int = 100,
        limit: int = 10,
    ) -> list[tuple[Record, float]]:
        """Run a nearest-neighbour query; returns (record, vectorScore) best-first."""
        if num_candidates < limit:
            raise ValueError(
                f"num_candidates ({num_candidates}) must be >= limit ({limit})"
            )
        index = await self.validate(collection, index_name, require_documents=True)
        if index.kind != "vector":
            raise PreconditionError(
                PreconditionError.INDEX,
                index_name,
                f"Search index '{index_name}' is a {index.kind} index, not vector",
            )
        if index.dimensions is not None and len(query_vector) != index.dimensions:
            raise ValueError(
                f"Query vector has {len(query_vector)} dimensions; "
                f"index '{index_name}' expects {index.dimensions}"
            )
        return await self._run(
            "vector_search",
            lambda repo: repo.search_vector(index, query_vector, limit),
        )

    async def distinct(self, collection: str, field_name: str) -> list[str]:
        await self.validate(collection)
        return await self._run("distinct", lambda repo: repo.distinct(collection, field_name))

    async def count(self, collection: str) -> int:
        await self.validate(collection)
        return await self._run("count", lambda repo: repo.count_records(collection))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def bulk_insert(
        self, collection: str, documents: list[Record], ordered: bool = False
    ) -> BulkWriteResult:
        """Unordered (by default) bulk insert; see Repository.bulk_insert."""
        result = await self._run_write(
            "bulk_insert", lambda repo: repo.bulk_insert(collection, documents, ordered)
        )
        logger.debug(
            "bulk_insert into %s: %d inserted, %d failed",
            collection,
            result.inserted,
            result.failed,
        )
        return result
