"""Ingestion job tracker.

The tracker is the single owner of job state. Callers interact with it only
through create/get/list/record/complete/cancel/evict; every operation takes
the tracker lock and readers always receive an immutable JobSnapshot, so the
tracker can be shared between the background ingestion thread and the
threads serving status queries.
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from caseforge.errors import JobLimitExceeded, JobNotFoundError

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class JobStatus:
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class ItemStatus:
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one record within a job."""

    record_id: str
    status: str
    error: str | None = None
    tokens: int = 0
    cost: float = 0.0
    attempts: int = 0


@dataclass(frozen=True)
class JobSummary:
    """Totals reported when a job completes."""

    processed: int
    failed: int
    total_cost: float
    total_tokens: int
    elapsed_seconds: float
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.processed + self.failed + self.cancelled

    @property
    def success_rate(self) -> float:
        attempted = self.processed + self.failed
        return self.processed / attempted if attempted else 0.0

    @property
    def items_per_second(self) -> float:
        attempted = self.processed + self.failed
        return attempted / self.elapsed_seconds if self.elapsed_seconds > 0 else 0.0


@dataclass(frozen=True)
class JobSnapshot:
    """Immutable view of a job at one point in time."""

    id: str
    targets: tuple[str, ...]
    status: str
    total: int
    progress: int
    processed: int
    failed: int
    total_cost: float
    total_tokens: int
    start_time: float
    end_time: float | None
    current_item: str | None
    cancelled: bool
    items: tuple[ItemResult, ...]
    summary: JobSummary | None = None

    @property
    def is_active(self) -> bool:
        return self.status == JobStatus.IN_PROGRESS


@dataclass
class _Job:
    id: str
    targets: tuple[str, ...]
    total: int
    start_time: float
    status: str = JobStatus.IN_PROGRESS
    progress: int = 0
    processed: int = 0
    failed: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0
    end_time: float | None = None
    current_item: str | None = None
    cancel_requested: bool = False
    items: list[ItemResult] = field(default_factory=list)
    summary: JobSummary | None = None

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            targets=self.targets,
            status=self.status,
            total=self.total,
            progress=self.progress,
            processed=self.processed,
            failed=self.failed,
            total_cost=self.total_cost,
            total_tokens=self.total_tokens,
            start_time=self.start_time,
            end_time=self.end_time,
            current_item=self.current_item,
            cancelled=self.cancel_requested,
            items=tuple(self.items),
            summary=self.summary,
        )


class JobTracker:
    """Thread-safe registry of ingestion jobs keyed by job id.

    Args:
        retention_seconds: Completed jobs older than this are evicted.
        max_active: Maximum number of jobs in progress at once.
        clock: Wall-clock source in seconds (swap out in tests).
    """

    def __init__(
        self,
        retention_seconds: float = 3600.0,
        max_active: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retention_seconds = retention_seconds
        self.max_active = max_active
        self._clock = clock
        self._jobs: dict[str, _Job] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> JobSnapshot:
        """Return a snapshot of *job_id*.

        Raises:
            JobNotFoundError: if the job never existed or has been evicted.
        """
        with self._lock:
            return self._get(job_id).snapshot()

    def list_active_jobs(self) -> list[JobSnapshot]:
        with self._lock:
            return [j.snapshot() for j in self._jobs.values() if j.status == JobStatus.IN_PROGRESS]

    def is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            return self._get(job_id).cancel_requested

    def _get(self, job_id: str) -> _Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(job_id) from None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_job(self, targets: Iterable[str], total: int = 0) -> str:
        """Register a new in-progress job and return its id.

        Raises:
            JobLimitExceeded: if ``max_active`` jobs are already in progress.
        """
        with self._lock:
            active = sum(1 for j in self._jobs.values() if j.status == JobStatus.IN_PROGRESS)
            if active >= self.max_active:
                raise JobLimitExceeded(
                    f"{active} ingestion jobs already in progress (limit {self.max_active})"
                )
            now = self._clock()
            job_id = _new_job_id(now)
            while job_id in self._jobs:
                job_id = _new_job_id(now)
            self._jobs[job_id] = _Job(
                id=job_id, targets=tuple(targets), total=total, start_time=now
            )
        logger.info("Created job %s (%d items)", job_id, total)
        return job_id

    def record_batch(
        self,
        job_id: str,
        items: Iterable[ItemResult],
        current_item: str | None = None,
    ) -> JobSnapshot:
        """Apply one batch's item outcomes as a single coalesced update."""
        with self._lock:
            job = self._get(job_id)
            for item in items:
                job.items.append(item)
                job.progress += 1
                if item.status == ItemStatus.SUCCESS:
                    job.processed += 1
                elif item.status == ItemStatus.FAILED:
                    job.failed += 1
                job.total_cost += item.cost
                job.total_tokens += item.tokens
            if current_item is not None:
                job.current_item = current_item
            return job.snapshot()

    def complete(self, job_id: str) -> JobSnapshot:
        """Mark *job_id* completed and attach its summary. Idempotent."""
        with self._lock:
            job = self._get(job_id)
            if job.status != JobStatus.COMPLETED:
                job.status = JobStatus.COMPLETED
                job.end_time = self._clock()
                job.current_item = None
                cancelled = sum(1 for i in job.items if i.status == ItemStatus.CANCELLED)
                job.summary = JobSummary(
                    processed=job.processed,
                    failed=job.failed,
                    total_cost=job.total_cost,
                    total_tokens=job.total_tokens,
                    elapsed_seconds=max(0.0, job.end_time - job.start_time),
                    cancelled=cancelled,
                )
            snap = job.snapshot()
        logger.info(
            "Job %s completed: %d processed, %d failed", job_id, snap.processed, snap.failed
        )
        return snap

    def cancel(self, job_id: str) -> bool:
        """Request cancellation. Returns False if the job had already completed."""
        with self._lock:
            job = self._get(job_id)
            if job.status == JobStatus.COMPLETED:
                return False
            job.cancel_requested = True
        logger.info("Cancellation requested for job %s", job_id)
        return True

    def evict_expired(self, now: float | None = None) -> list[str]:
        """Drop every job started more than ``retention_seconds`` ago, whatever its status.

        Eviction is silent: the job id simply stops resolving. A pipeline still
        running an evicted job stops after its batch in flight.
        """
        cutoff = (self._clock() if now is None else now) - self.retention_seconds
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if job.start_time < cutoff]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.debug("Evicted %d expired jobs", len(expired))
        return expired


def _new_job_id(now: float) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"job-{int(now * 1000)}-{suffix}"


class JobSweeper:
    """Background thread that calls ``tracker.evict_expired()`` periodically."""

    def __init__(self, tracker: JobTracker, interval_seconds: float = 600.0) -> None:
        self._tracker = tracker
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="job-sweeper", daemon=True)
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self._tracker.evict_expired()

    def __enter__(self) -> JobSweeper:
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()
