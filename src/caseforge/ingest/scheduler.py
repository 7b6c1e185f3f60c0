"""Bounded-concurrency embedding scheduler.

Runs embedding calls through a fixed pool of N asyncio workers pulling from a
shared queue, so at most N calls are ever outstanding. Transient failures are
retried by the RetryPolicy; an item that exhausts its retries or fails
terminally is recorded as an error and its worker moves on.

Records are processed in logical batches. Batches run strictly one after the
other, with an inter-batch delay that shrinks as batches complete but never
drops below a floor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from caseforge.db.models import Record
from caseforge.embedding.client import Embedder, Embedding, render_embedding_text
from caseforge.embedding.retry import RetryPolicy
from caseforge.errors import ProviderError

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    """Outcome of embedding one record: exactly one of embedding/error is set."""

    record: Record
    embedding: Embedding | None = None
    error: ProviderError | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.embedding is not None


@dataclass
class BatchOutcome:
    """Results of one batch, in completion order, plus accounting totals."""

    number: int
    results: list[EmbeddingResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[EmbeddingResult]:
        return [r for r in self.results if r.ok]

    @property
    def total_cost(self) -> float:
        return sum(r.embedding.cost for r in self.results if r.embedding is not None)

    @property
    def total_tokens(self) -> int:
        return sum(r.embedding.tokens for r in self.results if r.embedding is not None)


@dataclass
class SchedulerReport:
    """Everything the scheduler did across batches.

    ``remaining`` holds records never attempted because the batch callback
    asked to stop.
    """

    results: list[EmbeddingResult] = field(default_factory=list)
    batches: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0
    remaining: list[Record] = field(default_factory=list)


# Called after each batch; return False to stop before the next batch.
BatchCallback = Callable[[BatchOutcome], Awaitable[bool]]


class EmbeddingScheduler:
    """Drive embedding calls with a concurrency cap, retries and batch pacing.

    Args:
        client: Anything with ``async embed(text) -> Embedding``.
        concurrency: Maximum simultaneously outstanding embedding calls.
        retry_policy: Backoff policy for transient failures.
        text_fields: Record fields rendered into the embedding input.
        batch_size: Records per logical batch.
        inter_batch_delay: Delay after the first batch, in seconds.
        min_delay: Floor for the adaptive delay.
        delay_step: Amount the delay shrinks per completed batch.
        sleep: Awaitable sleep used for batch pacing.
    """

    def __init__(
        self,
        client: Embedder,
        concurrency: int = 50,
        retry_policy: RetryPolicy | None = None,
        text_fields: list[str] | None = None,
        batch_size: int = 100,
        inter_batch_delay: float = 0.2,
        min_delay: float = 0.05,
        delay_step: float = 0.002,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.client = client
        self.concurrency = concurrency
        self.retry_policy = retry_policy or RetryPolicy()
        self.text_fields = text_fields or ["id", "module", "title", "description", "steps"]
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.min_delay = min_delay
        self.delay_step = delay_step
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Pacing
    # ------------------------------------------------------------------

    def delay_after(self, batch_number: int) -> float:
        """Pause after batch *batch_number* (0-based) before the next one starts."""
        return max(self.min_delay, self.inter_batch_delay - batch_number * self.delay_step)

    def batches(self, records: Sequence[Record]) -> list[list[Record]]:
        return [
            list(records[i : i + self.batch_size])
            for i in range(0, len(records), self.batch_size)
        ]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(
        self, records: Sequence[Record], on_batch: BatchCallback | None = None
    ) -> SchedulerReport:
        """Embed *records* batch by batch.

        *on_batch* is awaited after each batch has fully joined and before the
        next batch starts; it is where the caller persists and reports progress.
        """
        report = SchedulerReport()
        groups = self.batches(records)
        for number, group in enumerate(groups):
            outcome = await self.run_batch(group, number)
            report.results.extend(outcome.results)
            report.batches += 1
            report.total_cost += outcome.total_cost
            report.total_tokens += outcome.total_tokens

            keep_going = True
            if on_batch is not None:
                keep_going = await on_batch(outcome)
            if not keep_going:
                report.remaining = [r for g in groups[number + 1 :] for r in g]
                break
            if number < len(groups) - 1:
                await self._sleep(self.delay_after(number))
        return report

    async def run_batch(self, records: Sequence[Record], number: int = 0) -> BatchOutcome:
        """Embed one batch with at most ``concurrency`` calls in flight.

        Returns one EmbeddingResult per input record, in completion order.
        """
        outcome = BatchOutcome(number=number)
        if not records:
            return outcome

        queue: asyncio.Queue[Record] = asyncio.Queue()
        for record in records:
            queue.put_nowait(record)

        async def worker() -> None:
            while True:
                try:
                    record = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcome.results.append(await self._embed_one(record))

        workers = min(self.concurrency, len(records))
        await asyncio.gather(*(worker() for _ in range(workers)))

        failed = len(outcome.results) - len(outcome.succeeded)
        logger.info(
            "Batch %d: %d embedded, %d failed, %d tokens",
            number + 1,
            len(outcome.succeeded),
            failed,
            outcome.total_tokens,
        )
        return outcome

    async def _embed_one(self, record: Record) -> EmbeddingResult:
        text = render_embedding_text(record, self.text_fields)
        attempts = 0
        try:
            async for attempt in self.retry_policy.retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    embedding = await self.client.embed(text)
        except ProviderError as exc:
            logger.warning(
                "Embedding failed for record '%s' after %d attempt(s): %s",
                record.record_id,
                attempts,
                exc,
            )
            return EmbeddingResult(record=record, error=exc, attempts=attempts)
        return EmbeddingResult(record=record, embedding=embedding, attempts=attempts)
