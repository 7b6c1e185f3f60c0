"""Batched persistence writer.

Takes the results of one scheduler batch, drops the failed embeddings, and
writes the rest in groups of ``write_batch_size`` using unordered bulk
inserts. A document the store rejects is counted as failed and never retried,
so for every call ``inserted + failed == number of successful embeddings``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from caseforge.db.models import Record
from caseforge.db.store import DocumentStore
from caseforge.errors import PartialBatchFailure, StoreTimeoutError
from caseforge.ingest.scheduler import EmbeddingResult

logger = logging.getLogger(__name__)


@dataclass
class WriteReport:
    """Outcome of persisting one batch.

    Attributes:
        successful: Successful embeddings handed to the writer.
        inserted: Records written to the store.
        failed: Records the store rejected.
        rejected: ``(result, reason)`` for every rejected record.
        partial_failure: Set when at least one record was rejected.
    """

    successful: int = 0
    inserted: int = 0
    failed: int = 0
    rejected: list[tuple[EmbeddingResult, str]] = field(default_factory=list)
    partial_failure: PartialBatchFailure | None = None


class BatchWriter:
    """Persist embedded records into *collection* in fixed-size groups.

    Args:
        store: Document store to write into.
        collection: Target collection name.
        write_batch_size: Documents per bulk insert.
    """

    def __init__(self, store: DocumentStore, collection: str, write_batch_size: int = 200) -> None:
        if write_batch_size < 1:
            raise ValueError(f"write_batch_size must be >= 1, got {write_batch_size}")
        self._store = store
        self._collection = collection
        self._write_batch_size = write_batch_size

    async def write(self, results: list[EmbeddingResult]) -> WriteReport:
        """Write every successful result; error results are skipped."""
        succeeded = [r for r in results if r.ok]
        report = WriteReport(successful=len(succeeded))

        for start in range(0, len(succeeded), self._write_batch_size):
            group = succeeded[start : start + self._write_batch_size]
            await self._write_group(group, report)

        if report.failed:
            report.partial_failure = PartialBatchFailure(
                inserted=report.inserted,
                failed=report.failed,
                errors=[reason for _, reason in report.rejected],
            )
            logger.warning(
                "Partial write into %s: %s", self._collection, report.partial_failure
            )
        return report

    async def _write_group(self, group: list[EmbeddingResult], report: WriteReport) -> None:
        documents = [_to_document(r) for r in group]
        try:
            result = await self._store.bulk_insert(self._collection, documents, ordered=False)
        except (StoreTimeoutError, sqlite3.Error) as exc:
            # The store rolled the whole group back.
            report.failed += len(group)
            report.rejected.extend((r, str(exc)) for r in group)
            return

        report.inserted += result.inserted
        report.failed += result.failed
        for pos, message in result.errors:
            report.rejected.append((group[pos], message))
        for r, doc in zip(group, documents):
            r.record.store_id = doc.store_id


def _to_document(result: EmbeddingResult) -> Record:
    """Copy the record with its embedding and metadata attached together."""
    embedding = result.embedding
    if embedding is None:
        raise ValueError(f"record '{result.record.record_id}' has no embedding")
    now = datetime.now(timezone.utc).isoformat()
    return replace(
        result.record,
        fields=dict(result.record.fields),
        embedding=embedding.vector,
        embedding_metadata=embedding.metadata(created_at=now),
        store_id=None,
    )
