"""Document store protocol.

Every backend implements the same observable semantics so callers stay
backend-agnostic:

- save() is insert-if-absent: a second save of an existing id never touches
  the stored payload or timestamps.
- get_unprocessed() is a read-only view; ordering is NOT part of the
  contract and callers must not depend on it.
- mark_processed() applies per id, confirms ids that are processed after the
  call and never fails for ids that are absent or already processed.
- purge() deletes exactly the processed ids captured in a snapshot at the
  start of the call; records processed while it runs survive until the next
  purge.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, TypeVar, runtime_checkable

from doccache.core.errors import InvalidDocumentIdError
from doccache.core.record import DocumentRecord, Found

T = TypeVar("T")


class MarkOutcome(Enum):
    """Result of marking a single document as processed."""

    MARKED = "marked"
    ALREADY_PROCESSED = "already_processed"
    NOT_FOUND = "not_found"

    @property
    def confirmed(self) -> bool:
        return self is not MarkOutcome.NOT_FOUND


@dataclass
class StoreMetrics:
    """Counters kept by every store instance."""

    documents_saved: int = 0
    duplicates_ignored: int = 0
    documents_marked: int = 0
    documents_purged: int = 0
    write_conflicts: int = 0
    failures: int = 0
    reconnections: int = 0


@dataclass
class StoreHealth:
    """Health check result."""

    healthy: bool
    latency_ms: float
    details: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DocumentStore(Protocol[T]):
    """Protocol defining the interface for document cache backends.

    A store is addressed by (connection string, database name, collection
    name), fixed at construction and exposed read-only for diagnostics.
    """

    @property
    def connection_string(self) -> str: ...

    @property
    def database_name(self) -> str: ...

    @property
    def collection_name(self) -> str: ...

    @property
    def metrics(self) -> StoreMetrics: ...

    async def save(self, doc_id: str, data: T) -> bool:
        """Insert a document unless one with the same id already exists.

        Args:
            doc_id: Non-empty, caller-supplied identifier.
            data: Payload to store.

        Returns:
            True if a record with doc_id exists after the call (new or
            pre-existing), False on unrecoverable storage failure.

        Raises:
            InvalidDocumentIdError: If doc_id is empty.
            StoreConnectionError: If a durable store cannot connect.
        """
        ...

    async def get(self, doc_id: str) -> Found[T] | None:
        """Return the stored payload wrapped in Found, or None if absent."""
        ...

    async def get_record(self, doc_id: str) -> DocumentRecord[T] | None:
        """Return the full record including processing metadata, or None."""
        ...

    async def get_unprocessed(self, max_records: int = 0) -> list[T]:
        """Return payloads of records not yet processed.

        Args:
            max_records: Upper bound on the result size. 0 means no limit.

        Raises:
            ValueError: If max_records is negative.
        """
        ...

    async def mark_processed(self, doc_ids: Iterable[str]) -> list[str]:
        """Mark documents as processed.

        Args:
            doc_ids: Ids the caller has finished processing.

        Returns:
            The requested ids that are processed after the call, in request
            order. Callers retry only the ids missing from this list.

        Raises:
            BatchOperationError: If every attempted id failed.
        """
        ...

    async def purge(self) -> bool:
        """Delete every record that was processed when the purge started.

        Returns:
            True if none of the snapshot records remain, False otherwise.

        Raises:
            BatchOperationError: If every delete in a non-empty snapshot failed.
        """
        ...

    async def health(self) -> StoreHealth: ...

    async def close(self) -> None: ...


def validate_doc_id(doc_id: str) -> str:
    """Reject empty document ids."""
    if not isinstance(doc_id, str) or not doc_id.strip():
        raise InvalidDocumentIdError(f"Document id must be a non-empty string, got: {doc_id!r}")
    return doc_id


def validate_max_records(max_records: int) -> int:
    if max_records < 0:
        raise ValueError(f"max_records must be >= 0 (0 means no limit), got: {max_records}")
    return max_records


def unique_ids(doc_ids: Iterable[str]) -> list[str]:
    """Deduplicate ids, keeping first-seen order."""
    return list(dict.fromkeys(doc_ids))
