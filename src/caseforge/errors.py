"""Exception taxonomy shared by ingestion and retrieval.

Provider errors drive the scheduler's retry decision. Precondition errors are
raised before any search runs. PartialBatchFailure and DegradedFusion are
carried in result objects rather than raised.
"""

from __future__ import annotations


class CaseforgeError(Exception):
    """Base class for all caseforge errors."""


# ---------------------------------------------------------------------------
# Embedding provider
# ---------------------------------------------------------------------------


class ProviderError(CaseforgeError):
    """An embedding or LLM provider call failed.

    Attributes:
        status: HTTP-style status code reported by the provider, if any.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientProviderError(ProviderError):
    """Rate limit, timeout, connection failure or 5xx; eligible for retry."""


class TerminalProviderError(ProviderError):
    """Malformed input, auth failure or any other 4xx; never retried."""


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------


class PreconditionError(CaseforgeError):
    """The store is not provisioned for the requested operation.

    Attributes:
        check: Which check failed: 'database', 'collection', 'documents' or 'index'.
        target: Name of the missing database/collection/index.
    """

    DATABASE = "database"
    COLLECTION = "collection"
    DOCUMENTS = "documents"
    INDEX = "index"

    def __init__(self, check: str, target: str, message: str) -> None:
        super().__init__(message)
        self.check = check
        self.target = target


class StoreTimeoutError(CaseforgeError):
    """A document-store operation exceeded its timeout."""


class PartialBatchFailure(CaseforgeError):
    """Some documents of one bulk write were rejected by the store.

    Attributes:
        inserted: Documents written.
        failed: Documents rejected.
        errors: One message per rejected document.
    """

    def __init__(self, inserted: int, failed: int, errors: list[str]) -> None:
        super().__init__(f"{failed} of {inserted + failed} documents rejected")
        self.inserted = inserted
        self.failed = failed
        self.errors = errors


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class DegradedFusion(CaseforgeError):
    """One or more retrieval methods were unavailable for a query.

    Attributes:
        unavailable: Mapping of method name → the PreconditionError that disabled it.
    """

    def __init__(self, unavailable: dict[str, PreconditionError]) -> None:
        names = ", ".join(sorted(unavailable))
        super().__init__(f"retrieval degraded; unavailable: {names}")
        self.unavailable = unavailable


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobNotFoundError(CaseforgeError, KeyError):
    """No job with the given id (never created, or evicted after retention)."""

    def __str__(self) -> str:
        return f"Job not found: {self.args[0]}"


class JobLimitExceeded(CaseforgeError):
    """Too many ingestion jobs are already in progress."""
