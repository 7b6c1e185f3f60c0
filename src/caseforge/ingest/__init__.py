"""caseforge ingest pipeline — record loading, embedding scheduler, batched writer."""

from caseforge.ingest.loader import load_records
from caseforge.ingest.pipeline import IngestionPipeline, IngestionService
from caseforge.ingest.scheduler import (
    BatchOutcome,
    EmbeddingResult,
    EmbeddingScheduler,
    SchedulerReport,
)
from caseforge.ingest.writer import BatchWriter, WriteReport

__all__ = [
    "BatchOutcome",
    "BatchWriter",
    "EmbeddingResult",
    "EmbeddingScheduler",
    "IngestionPipeline",
    "IngestionService",
    "SchedulerReport",
    "WriteReport",
    "load_records",
]
