"""doccache - Backend-agnostic document cache with processing-state tracking."""

from doccache.backends import (
    ConnectionState,
    DocumentStore,
    InMemoryDocumentStore,
    MarkOutcome,
    RedisDocumentStore,
    StoreHealth,
    StoreMetrics,
)
from doccache.core import (
    BatchOperationError,
    ConfigurationError,
    DocumentRecord,
    DocumentStoreError,
    Found,
    InvalidDocumentIdError,
    StoreConnectionError,
    StoreSettings,
    WriteConflictError,
    create_store,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "DocumentRecord",
    "Found",
    # Configuration
    "StoreSettings",
    "create_store",
    # Errors
    "DocumentStoreError",
    "InvalidDocumentIdError",
    "StoreConnectionError",
    "WriteConflictError",
    "BatchOperationError",
    "ConfigurationError",
    # Backends
    "DocumentStore",
    "MarkOutcome",
    "StoreHealth",
    "StoreMetrics",
    "InMemoryDocumentStore",
    "RedisDocumentStore",
    "ConnectionState",
    # Meta
    "__version__",
]
