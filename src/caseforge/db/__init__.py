"""caseforge document store layer."""

from caseforge.db.connection import Database
from caseforge.db.indexes import ensure_fts_table, ensure_vec_table, index_table_name, to_slug
from caseforge.db.migrations import MIGRATIONS, run_migrations
from caseforge.db.models import EmbeddingMetadata, FuzzyConfig, Record, SearchIndex
from caseforge.db.repository import BulkWriteResult, Repository
from caseforge.db.schema import initialize
from caseforge.db.store import DocumentStore

__all__ = [
    "BulkWriteResult",
    "Database",
    "DocumentStore",
    "EmbeddingMetadata",
    "FuzzyConfig",
    "MIGRATIONS",
    "Record",
    "Repository",
    "SearchIndex",
    "ensure_fts_table",
    "ensure_vec_table",
    "index_table_name",
    "initialize",
    "run_migrations",
    "to_slug",
]
