"""In-memory document store for doccache."""

import logging
import threading
import time
from collections.abc import Iterable
from typing import Generic, TypeVar

from doccache.backends.base import (
    MarkOutcome,
    StoreHealth,
    StoreMetrics,
    unique_ids,
    validate_doc_id,
    validate_max_records,
)
from doccache.core.errors import BatchOperationError
from doccache.core.record import DocumentRecord, Found, utc_now

T = TypeVar("T")

logger = logging.getLogger("doccache.memory")


class InMemoryDocumentStore(Generic[T]):
    """Document store over a lock-guarded dict.

    Suitable for tests and non-durable deployments: records are lost when
    the process exits. Payloads are kept by reference.

    The lock only covers the dict operations themselves and is never held
    across an await, so one instance can be shared between coroutines and
    between threads running their own event loops.

    Args:
        connection_string: Informational only; no connection is made.
        database_name: Database part of the store address.
        collection_name: Collection part of the store address.
    """

    def __init__(
        self,
        connection_string: str = "",
        database_name: str = "",
        collection_name: str = "",
    ) -> None:
        self._connection_string = connection_string
        self._database_name = database_name
        self._collection_name = collection_name
        self._documents: dict[str, DocumentRecord[T]] = {}
        self._lock = threading.Lock()
        self._metrics = StoreMetrics()

    @property
    def connection_string(self) -> str:
        return self._connection_string

    @property
    def database_name(self) -> str:
        return self._database_name

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def metrics(self) -> StoreMetrics:
        return self._metrics

    def __len__(self) -> int:
        return len(self._documents)

    async def __aenter__(self) -> "InMemoryDocumentStore[T]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def save(self, doc_id: str, data: T) -> bool:
        """Insert the document unless the id is already stored.

        Returns:
            True once a record with doc_id exists.
        """
        validate_doc_id(doc_id)
        with self._lock:
            if doc_id in self._documents:
                self._metrics.duplicates_ignored += 1
                inserted = False
            else:
                self._documents[doc_id] = DocumentRecord(id=doc_id, data=data)
                self._metrics.documents_saved += 1
                inserted = True

        if inserted:
            logger.debug(f"Saved document {doc_id}", extra={"store": "memory", "doc_id": doc_id})
        else:
            logger.debug(
                f"Document {doc_id} already stored, save ignored",
                extra={"store": "memory", "doc_id": doc_id},
            )
        return True

    async def get(self, doc_id: str) -> Found[T] | None:
        record = self._documents.get(doc_id)
        if record is None:
            return None
        return Found(record.data)

    async def get_record(self, doc_id: str) -> DocumentRecord[T] | None:
        return self._documents.get(doc_id)

    async def get_unprocessed(self, max_records: int = 0) -> list[T]:
        """Return unprocessed payloads in insertion order.

        Insertion order is an implementation detail of this backend, not a
        guarantee of the DocumentStore contract.

        Args:
            max_records: Maximum number of payloads. 0 means no limit.
        """
        validate_max_records(max_records)
        with self._lock:
            snapshot = list(self._documents.values())

        unprocessed = [record.data for record in snapshot if not record.processed]
        if max_records:
            return unprocessed[:max_records]
        return unprocessed

    def _transition(self, doc_id: str) -> MarkOutcome:
        """Atomically move one record to processed."""
        with self._lock:
            record = self._documents.get(doc_id)
            if record is None:
                return MarkOutcome.NOT_FOUND
            if record.processed:
                return MarkOutcome.ALREADY_PROCESSED
            self._documents[doc_id] = record.as_processed(utc_now())
            self._metrics.documents_marked += 1
            return MarkOutcome.MARKED

    async def mark_processed(self, doc_ids: Iterable[str]) -> list[str]:
        """Mark documents processed, one id at a time.

        Returns:
            Requested ids that are processed after the call, in request order.
        """
        requested = unique_ids(doc_ids)
        confirmed: list[str] = []
        failures: dict[str, Exception] = {}

        for doc_id in requested:
            try:
                outcome = self._transition(doc_id)
            except Exception as e:
                with self._lock:
                    self._metrics.failures += 1
                failures[doc_id] = e
                logger.warning(
                    f"Failed to mark document {doc_id} as processed: {e}",
                    extra={"store": "memory", "operation": "mark_processed", "doc_id": doc_id},
                )
                continue

            if outcome.confirmed:
                confirmed.append(doc_id)

        if failures and len(failures) == len(requested):
            logger.error(
                f"Marking failed for all {len(failures)} document(s)",
                extra={"store": "memory", "operation": "mark_processed", "count": len(failures)},
            )
            raise BatchOperationError("mark_processed", failures)

        logger.debug(
            f"Confirmed {len(confirmed)}/{len(requested)} document(s) as processed",
            extra={"store": "memory", "operation": "mark_processed", "count": len(confirmed)},
        )
        return confirmed

    def _remove(self, doc_id: str) -> bool:
        with self._lock:
            record = self._documents.get(doc_id)
            # Gone, or removed and saved again since the snapshot
            if record is None or not record.processed:
                return False
            del self._documents[doc_id]
            self._metrics.documents_purged += 1
            return True

    async def purge(self) -> bool:
        """Delete the processed records captured at the start of the call.

        Returns:
            True if none of the snapshot records remain afterwards.
        """
        with self._lock:
            snapshot = [doc_id for doc_id, record in self._documents.items() if record.processed]

        failures: dict[str, Exception] = {}
        for doc_id in snapshot:
            try:
                self._remove(doc_id)
            except Exception as e:
                with self._lock:
                    self._metrics.failures += 1
                failures[doc_id] = e
                logger.warning(
                    f"Failed to purge document {doc_id}: {e}",
                    extra={"store": "memory", "operation": "purge", "doc_id": doc_id},
                )

        if failures and len(failures) == len(snapshot):
            logger.error(
                f"Purge failed for all {len(failures)} document(s)",
                extra={"store": "memory", "operation": "purge", "count": len(failures)},
            )
            raise BatchOperationError("purge", failures)

        with self._lock:
            # An id saved again since the snapshot is a new, unprocessed record
            remaining = [
                doc_id
                for doc_id in snapshot
                if doc_id in self._documents and self._documents[doc_id].processed
            ]

        logger.info(
            f"Purged {len(snapshot) - len(remaining)}/{len(snapshot)} processed document(s)",
            extra={"store": "memory", "operation": "purge", "count": len(snapshot) - len(remaining)},
        )
        return not remaining

    async def health(self) -> StoreHealth:
        start = time.monotonic()
        with self._lock:
            total = len(self._documents)
            processed = sum(1 for record in self._documents.values() if record.processed)
        return StoreHealth(
            healthy=True,
            latency_ms=(time.monotonic() - start) * 1000,
            details={
                "documents": total,
                "unprocessed": total - processed,
                "processed": processed,
            },
        )

    async def close(self) -> None:
        """Drop all stored records."""
        with self._lock:
            self._documents.clear()
