"""Backend implementations of the document store."""

from doccache.backends.base import DocumentStore, MarkOutcome, StoreHealth, StoreMetrics
from doccache.backends.memory import InMemoryDocumentStore
from doccache.backends.redis_backend import ConnectionState, RedisDocumentStore

__all__ = [
    "DocumentStore",
    "MarkOutcome",
    "StoreHealth",
    "StoreMetrics",
    "InMemoryDocumentStore",
    "RedisDocumentStore",
    "ConnectionState",
]
