"""Error taxonomy for document stores.

Missing documents are not errors: get() returns None and mark_processed()
leaves absent ids out of its confirmed list. Partial batch failures are
reported through the shorter confirmed list (mark_processed) or a False
result (purge); only a batch in which every sub-operation failed raises.
"""


class DocumentStoreError(Exception):
    """Base class for all doccache errors."""


class InvalidDocumentIdError(DocumentStoreError, ValueError):
    """Raised when a document id is empty or whitespace only."""


class ConfigurationError(DocumentStoreError, ValueError):
    """Raised when store settings are inconsistent."""


class StoreConnectionError(DocumentStoreError):
    """Raised when a durable store cannot establish its connection.

    The failure is not cached: the next call on the store tries to connect
    again.
    """


class WriteConflictError(DocumentStoreError):
    """Raised when a concurrent modification prevents a single-document write.

    Attributes:
        doc_id: Id of the document whose write could not be applied.
    """

    def __init__(self, doc_id: str, message: str | None = None):
        self.doc_id = doc_id
        super().__init__(message or f"Concurrent modification of document {doc_id!r}")


class BatchOperationError(DocumentStoreError):
    """Raised when every sub-operation of a batch call failed.

    Attributes:
        operation: Name of the batch operation ("mark_processed" or "purge").
        failures: Mapping of document id to the exception raised for it.
    """

    def __init__(self, operation: str, failures: dict[str, Exception]):
        self.operation = operation
        self.failures = failures
        super().__init__(f"{operation} failed for all {len(failures)} document(s)")

    def __str__(self) -> str:
        base = super().__str__()
        if self.failures:
            first_id, first_error = next(iter(self.failures.items()))
            return f"{base} (first error for {first_id!r}: {first_error})"
        return base
