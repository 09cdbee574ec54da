"""Core components for doccache.

Types:
    DocumentRecord: Immutable stored unit (payload plus processing metadata).
    Found: Explicit 'present' result returned by DocumentStore.get().

Errors:
    DocumentStoreError: Base class of every doccache error.
    InvalidDocumentIdError: Empty document id.
    StoreConnectionError: Durable store could not connect; retried next call.
    WriteConflictError: Concurrent modification of a single document.
    BatchOperationError: Every sub-operation of a batch call failed.
    ConfigurationError: Invalid store settings.

Configuration:
    StoreSettings: Store address and backend selection.
    create_store: Backend factory.
"""

from doccache.core.config import StoreSettings, create_store
from doccache.core.errors import (
    BatchOperationError,
    ConfigurationError,
    DocumentStoreError,
    InvalidDocumentIdError,
    StoreConnectionError,
    WriteConflictError,
)
from doccache.core.record import DocumentRecord, Found

__all__ = [
    "DocumentRecord",
    "Found",
    "DocumentStoreError",
    "InvalidDocumentIdError",
    "StoreConnectionError",
    "WriteConflictError",
    "BatchOperationError",
    "ConfigurationError",
    "StoreSettings",
    "create_store",
]
