"""Ingestion pipeline: scheduler → writer → job update, one batch at a time.

A job moves from ``in-progress`` to ``completed`` once every record has been
attempted; there is no failed job state. Per-record failures (provider errors,
store rejections) land in the job's item list and never abort the job.

Within a batch the workers never touch the job. The pipeline applies one
coalesced update per batch after the batch has fully joined and been written.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Sequence

from caseforge.config import CaseforgeConfig
from caseforge.db.models import Record
from caseforge.db.store import DocumentStore
from caseforge.embedding.client import Embedder, EmbeddingClient
from caseforge.embedding.retry import RetryPolicy
from caseforge.ingest.scheduler import BatchOutcome, EmbeddingScheduler
from caseforge.ingest.writer import BatchWriter, WriteReport
from caseforge.errors import JobNotFoundError
from caseforge.jobs import ItemResult, ItemStatus, JobSnapshot, JobSweeper, JobTracker

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Drive a job's records from "needs embedding" to "persisted with embedding".

    Args:
        scheduler: Embedding scheduler (concurrency, retries, pacing).
        writer: Batched writer bound to the target collection.
        tracker: Job tracker receiving one update per batch.
    """

    def __init__(
        self, scheduler: EmbeddingScheduler, writer: BatchWriter, tracker: JobTracker
    ) -> None:
        self.scheduler = scheduler
        self.writer = writer
        self.tracker = tracker

    async def run(self, job_id: str, records: Sequence[Record]) -> JobSnapshot:
        """Process *records* for *job_id* and return the completed job snapshot.

        If cancellation is requested, the batch in flight finishes and the
        remaining records are marked cancelled. Any unexpected error marks the
        unreported records failed, completes the job and is re-raised. If the
        tracker evicts the job while it runs, processing stops after the batch
        in flight and the last snapshot taken is returned.
        """
        last = self.tracker.get_job(job_id)
        reported = 0
        evicted = False

        def report(items: list[ItemResult], current: str | None = None) -> None:
            nonlocal last, evicted
            if evicted:
                return
            try:
                last = self.tracker.record_batch(job_id, items, current_item=current)
            except JobNotFoundError:
                evicted = True
                logger.warning("Job %s was evicted while running; stopping", job_id)

        def keep_going() -> bool:
            nonlocal evicted
            if evicted:
                return False
            try:
                return not self.tracker.is_cancelled(job_id)
            except JobNotFoundError:
                evicted = True
                return False

        async def on_batch(outcome: BatchOutcome) -> bool:
            nonlocal reported
            written = await self.writer.write(outcome.results)
            items = _item_results(outcome, written)
            current = outcome.results[-1].record.record_id if outcome.results else None
            report(items, current)
            reported += len(items)
            return keep_going()

        try:
            if keep_going():
                remaining = (await self.scheduler.run(records, on_batch)).remaining
            else:
                remaining = list(records)
            if remaining and not evicted:
                logger.info("Job %s cancelled; %d records skipped", job_id, len(remaining))
                report([ItemResult(r.record_id, ItemStatus.CANCELLED) for r in remaining])
        except Exception as exc:
            report(
                [
                    ItemResult(r.record_id, ItemStatus.FAILED, error=str(exc))
                    for r in records[reported:]
                ]
            )
            raise
        finally:
            if not evicted:
                try:
                    last = self.tracker.complete(job_id)
                except JobNotFoundError:
                    logger.warning("Job %s was evicted before it completed", job_id)
        return last


def _item_results(outcome: BatchOutcome, report: WriteReport) -> list[ItemResult]:
    rejected = {id(result): reason for result, reason in report.rejected}
    items: list[ItemResult] = []
    for result in outcome.results:
        if result.embedding is None:
            items.append(
                ItemResult(
                    record_id=result.record.record_id,
                    status=ItemStatus.FAILED,
                    error=str(result.error),
                    attempts=result.attempts,
                )
            )
            continue
        reason = rejected.get(id(result))
        items.append(
            ItemResult(
                record_id=result.record.record_id,
                status=ItemStatus.SUCCESS if reason is None else ItemStatus.FAILED,
                error=reason,
                tokens=result.embedding.tokens,
                cost=result.embedding.cost,
                attempts=result.attempts,
            )
        )
    return items


# ------------------------------------------------------------------
# Service wiring
# ------------------------------------------------------------------


class IngestionService:
    """Build pipelines from configuration and run jobs in the background.

    The first submit() starts a JobSweeper that evicts expired jobs every
    ``jobs.sweep_interval_seconds``; close() (or leaving the ``with`` block)
    stops it.

    Args:
        config: Loaded caseforge configuration.
        tracker: Shared job tracker.
        client: Embedding client; built from ``config.embedding`` if omitted.
        store: Document store; built from ``config.store`` if omitted.
    """

    def __init__(
        self,
        config: CaseforgeConfig,
        tracker: JobTracker,
        client: Embedder | None = None,
        store: DocumentStore | None = None,
    ) -> None:
        self.config = config
        self.tracker = tracker
        self.client = client or EmbeddingClient(
            model=config.embedding.model,
            dimensions=config.embedding.dimensions,
            price_per_1k_tokens=config.embedding.price_per_1k_tokens,
            timeout=config.embedding.timeout_seconds,
        )
        self.store = store or DocumentStore(
            config.store.path, timeout=config.store.timeout_seconds
        )
        self._threads: dict[str, threading.Thread] = {}
        self.sweeper = JobSweeper(tracker, config.jobs.sweep_interval_seconds)

    def build_pipeline(self) -> IngestionPipeline:
        ing = self.config.ingestion
        scheduler = EmbeddingScheduler(
            self.client,
            concurrency=ing.concurrency,
            retry_policy=RetryPolicy(
                max_attempts=ing.max_retries,
                base_delay=ing.backoff_base,
                max_delay=ing.backoff_max,
            ),
            text_fields=self.config.embedding.text_fields,
            batch_size=ing.batch_size,
            inter_batch_delay=ing.inter_batch_delay,
            min_delay=ing.min_delay,
            delay_step=ing.delay_step,
        )
        writer = BatchWriter(
            self.store, self.config.store.collection, write_batch_size=ing.write_batch_size
        )
        return IngestionPipeline(scheduler, writer, self.tracker)

    async def preflight(self) -> None:
        """Raise PreconditionError unless the database and collection exist."""
        await self.store.validate(self.config.store.collection)

    async def ingest(self, records: Sequence[Record], targets: Sequence[str]) -> JobSnapshot:
        """Validate, create a job and run it to completion in the current loop."""
        await self.preflight()
        job_id = self.tracker.create_job(targets, total=len(records))
        return await self.build_pipeline().run(job_id, records)

    def submit(self, records: Sequence[Record], targets: Sequence[str]) -> str:
        """Validate, create a job and run it on a background thread.

        Returns the job id immediately.

        Raises:
            PreconditionError: If the database or collection is missing.
            JobLimitExceeded: If too many jobs are already in progress.
        """
        asyncio.run(self.preflight())
        job_id = self.tracker.create_job(targets, total=len(records))
        self.sweeper.start()
        thread = threading.Thread(
            target=self._run_job,
            args=(job_id, list(records)),
            name=f"ingest-{job_id}",
            daemon=True,
        )
        self._threads[job_id] = thread
        thread.start()
        return job_id

    def close(self) -> None:
        """Stop the background eviction sweep."""
        self.sweeper.stop()

    def __enter__(self) -> IngestionService:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def wait(self, job_id: str, timeout: float | None = None) -> JobSnapshot:
        """Block until the background thread for *job_id* finishes."""
        thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
            if not thread.is_alive():
                self._threads.pop(job_id, None)
        return self.tracker.get_job(job_id)

    def _run_job(self, job_id: str, records: list[Record]) -> None:
        try:
            asyncio.run(self.build_pipeline().run(job_id, records))
        except Exception:
            # Thread boundary: the job is already completed with its items failed.
            logger.exception("Ingestion job %s aborted", job_id)
