"""Redis document store.

Durable implementation of the DocumentStore contract.

Keyspace for a store addressed as (database, collection), with
ns = "{key_prefix}:{database}:{collection}" and both names percent-encoded
so that neither can contain ":":

- ns:doc:{id}       hash: id, data (JSON), created_at, processed, processed_at
- ns:unprocessed    sorted set of unprocessed ids, scored by creation time
- ns:processed      set of processed ids, the purge snapshot source
- {key_prefix}:collections   registry of provisioned "database/collection"

Single-document writes use WATCH/MULTI so that insert-if-absent and the
processed transition are atomic per id. Nothing spans more than one document.
"""

import asyncio
import logging
import time
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from urllib.parse import quote, urlparse, urlunparse

from pydantic import TypeAdapter
from redis.asyncio import BlockingConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from doccache.backends.base import (
    MarkOutcome,
    StoreHealth,
    StoreMetrics,
    unique_ids,
    validate_doc_id,
    validate_max_records,
)
from doccache.core.errors import (
    BatchOperationError,
    ConfigurationError,
    StoreConnectionError,
    WriteConflictError,
)
from doccache.core.record import DocumentRecord, Found, utc_now

T = TypeVar("T")

logger = logging.getLogger("doccache.redis")

_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


def _sanitize_url(url: str) -> str:
    """Mask password in Redis URL for logging."""
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = f"{parsed.username or ''}:****@{parsed.hostname}"
            if parsed.port:
                netloc += f":{parsed.port}"
            return urlunparse(
                (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
            )
        return f"{parsed.hostname}:{parsed.port or 6379}"
    except Exception:
        return "<url>"


def _key_part(name: str) -> str:
    """Encode a database or collection name for use inside a key."""
    return quote(name, safe="")


class ConnectionState(Enum):
    """Lifecycle of the store's Redis connection."""

    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    FAILED = "failed"


class RedisDocumentStore(Generic[T]):
    """Redis-backed document store.

    The connection is established lazily on first use and owned by this
    instance. A failed or lost connection is retried on the next call; it
    never leaves the store permanently unusable.

    Args:
        connection_string: Redis URL, e.g. "redis://localhost:6379/0".
        database_name: Database part of the store address.
        collection_name: Collection part of the store address.
        data_type: Payload type, used to serialize and validate payloads.
        key_prefix: Prefix for every key this store writes.
        pool_size: Connection pool size. Callers beyond it wait for a free
            connection instead of failing.
    """

    def __init__(
        self,
        connection_string: str,
        database_name: str,
        collection_name: str,
        data_type: Any = Any,
        key_prefix: str = "doccache",
        pool_size: int = 10,
    ) -> None:
        self._connection_string = connection_string
        self._url_safe = _sanitize_url(connection_string)
        self._database_name = database_name
        self._collection_name = collection_name
        self._adapter: TypeAdapter[T] = TypeAdapter(data_type)
        self._key_prefix = key_prefix
        self._namespace = f"{key_prefix}:{_key_part(database_name)}:{_key_part(collection_name)}"
        self._pool_size = pool_size

        self._redis: Redis | None = None
        self._state = ConnectionState.UNCONNECTED
        self._has_connected = False
        self._metrics = StoreMetrics()
        self._conn_lock = asyncio.Lock()  # Protects connection creation

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
    def state(self) -> ConnectionState:
        return self._state

    @property
    def metrics(self) -> StoreMetrics:
        return self._metrics

    @property
    def _unprocessed_key(self) -> str:
        return f"{self._namespace}:unprocessed"

    @property
    def _processed_key(self) -> str:
        return f"{self._namespace}:processed"

    @property
    def _registry_key(self) -> str:
        return f"{self._key_prefix}:collections"

    @property
    def _registry_entry(self) -> str:
        return f"{_key_part(self._database_name)}/{_key_part(self._collection_name)}"

    def _doc_key(self, doc_id: str) -> str:
        return f"{self._namespace}:doc:{doc_id}"

    async def __aenter__(self) -> "RedisDocumentStore[T]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def _get_client(self) -> Redis:
        """Return a connected client, connecting first if needed.

        Raises:
            StoreConnectionError: If the connection or provisioning fails.
        """
        if self._state is ConnectionState.CONNECTED and self._redis is not None:
            return self._redis

        async with self._conn_lock:
            # Another coroutine may have connected while we waited
            if self._state is ConnectionState.CONNECTED and self._redis is not None:
                return self._redis

            new_redis = self._new_client()
            try:
                await new_redis.ping()
                await self._provision(new_redis)
            except (RedisError, OSError) as e:
                self._state = ConnectionState.FAILED
                try:
                    await new_redis.aclose()
                except Exception as close_err:
                    logger.debug(f"Error closing failed connection: {close_err}")
                logger.warning(
                    f"Could not connect document store to Redis at {self._url_safe}: {e}",
                    extra={"store": "redis", "operation": "connect"},
                )
                raise StoreConnectionError(
                    f"Could not connect to Redis at {self._url_safe}: {e}"
                ) from e

            self._redis = new_redis
            self._state = ConnectionState.CONNECTED
            if self._has_connected:
                self._metrics.reconnections += 1
                logger.info(
                    f"Reconnected document store to Redis at {self._url_safe} - {self._namespace}",
                    extra={"store": "redis", "operation": "connect"},
                )
            else:
                logger.info(
                    f"Connected document store to Redis at {self._url_safe} - {self._namespace}",
                    extra={"store": "redis", "operation": "connect"},
                )
            self._has_connected = True
            return new_redis

    def _new_client(self) -> Redis:
        """Build an unconnected client over a blocking pool."""
        try:
            pool = BlockingConnectionPool.from_url(
                self._connection_string, max_connections=self._pool_size, decode_responses=True
            )
        except ValueError as e:
            self._state = ConnectionState.FAILED
            raise ConfigurationError(f"Invalid Redis URL for document store: {e}") from e
        return Redis(connection_pool=pool)

    async def _provision(self, client: Redis) -> None:
        """Register the database/collection pair; idempotent."""
        added = await client.sadd(self._registry_key, self._registry_entry)
        if added:
            logger.info(
                f"Provisioned collection {self._database_name}/{self._collection_name}",
                extra={"store": "redis", "operation": "provision"},
            )

    async def _drop_connection(self, client: Redis, error: Exception) -> None:
        """Forget a failed client so the next call reconnects.

        Only the client that failed is dropped. If another coroutine has
        already replaced it, the newer client is left alone.
        """
        async with self._conn_lock:
            if self._redis is not client:
                logger.debug(f"Ignoring failure of a replaced Redis client: {error}")
                return
            self._redis = None
            self._state = ConnectionState.FAILED
        logger.warning(
            f"Redis connection lost: {error}",
            extra={"store": "redis", "operation": "connect"},
        )
        try:
            await client.aclose()
        except Exception as close_err:
            logger.debug(f"Error closing lost connection: {close_err}")

    async def _connection_lost(self, client: Redis, error: Exception) -> StoreConnectionError:
        await self._drop_connection(client, error)
        return StoreConnectionError(f"Lost connection to Redis at {self._url_safe}: {error}")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _encode(self, record: DocumentRecord[T]) -> dict[str, str]:
        return {
            "id": record.id,
            "data": self._adapter.dump_json(record.data).decode("utf-8"),
            "created_at": record.created_at.isoformat(),
            "processed": "1" if record.processed else "0",
            "processed_at": record.processed_at.isoformat() if record.processed_at else "",
        }

    def _decode(self, raw: dict[str, str]) -> DocumentRecord[T]:
        processed = raw.get("processed") == "1"
        processed_at = raw.get("processed_at") or None
        return DocumentRecord(
            id=raw["id"],
            data=self._adapter.validate_json(raw["data"]),
            created_at=datetime.fromisoformat(raw["created_at"]),
            processed=processed,
            processed_at=datetime.fromisoformat(processed_at) if processed_at else None,
        )

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    async def save(self, doc_id: str, data: T) -> bool:
        """Insert the document unless the id is already stored.

        Existence check and insert run under WATCH, so two concurrent saves of
        the same id never both insert.
        """
        validate_doc_id(doc_id)
        record = DocumentRecord(id=doc_id, data=data)
        fields = self._encode(record)
        key = self._doc_key(doc_id)
        client = await self._get_client()

        try:
            async with client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if await pipe.exists(key):
                    self._metrics.duplicates_ignored += 1
                    logger.debug(
                        f"Document {doc_id} already stored, save ignored",
                        extra={"store": "redis", "doc_id": doc_id},
                    )
                    return True
                pipe.multi()
                pipe.hset(key, mapping=fields)
                pipe.zadd(self._unprocessed_key, {doc_id: record.created_at.timestamp()})
                await pipe.execute()
        except WatchError:
            # Key changed between EXISTS and EXEC: a concurrent save won
            self._metrics.write_conflicts += 1
            try:
                exists = await client.exists(key)
            except _CONNECTION_ERRORS as e:
                raise await self._connection_lost(client, e) from e
            if exists:
                self._metrics.duplicates_ignored += 1
                return True
            raise WriteConflictError(doc_id)
        except _CONNECTION_ERRORS as e:
            raise await self._connection_lost(client, e) from e
        except RedisError as e:
            self._metrics.failures += 1
            logger.error(
                f"Failed to save document {doc_id}: {e}",
                extra={"store": "redis", "operation": "save", "doc_id": doc_id},
            )
            return False

        self._metrics.documents_saved += 1
        logger.debug(f"Saved document {doc_id}", extra={"store": "redis", "doc_id": doc_id})
        return True

    async def get(self, doc_id: str) -> Found[T] | None:
        client = await self._get_client()
        try:
            raw = await client.hget(self._doc_key(doc_id), "data")
        except _CONNECTION_ERRORS as e:
            raise await self._connection_lost(client, e) from e
        if raw is None:
            return None
        return Found(self._adapter.validate_json(raw))

    async def get_record(self, doc_id: str) -> DocumentRecord[T] | None:
        client = await self._get_client()
        try:
            raw = await client.hgetall(self._doc_key(doc_id))
        except _CONNECTION_ERRORS as e:
            raise await self._connection_lost(client, e) from e
        if not raw:
            return None
        return self._decode(raw)

    async def get_unprocessed(self, max_records: int = 0) -> list[T]:
        """Return unprocessed payloads, oldest first.

        Creation order is an implementation detail of this backend, not a
        guarantee of the DocumentStore contract.

        Args:
            max_records: Maximum number of payloads. 0 means no limit.
        """
        validate_max_records(max_records)
        client = await self._get_client()
        try:
            doc_ids = await client.zrange(self._unprocessed_key, 0, max_records - 1 if max_records else -1)
            if not doc_ids:
                return []
            async with client.pipeline(transaction=False) as pipe:
                for doc_id in doc_ids:
                    pipe.hmget(self._doc_key(doc_id), ["data", "processed"])
                rows = await pipe.execute()
        except _CONNECTION_ERRORS as e:
            raise await self._connection_lost(client, e) from e

        payloads: list[T] = []
        for data, processed in rows:
            # Skip index entries whose document was marked or removed meanwhile
            if data is None or processed == "1":
                continue
            payloads.append(self._adapter.validate_json(data))
        return payloads

    async def _mark_one(self, client: Redis, doc_id: str) -> MarkOutcome:
        key = self._doc_key(doc_id)
        try:
            async with client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                processed = await pipe.hget(key, "processed")
                if processed is None:
                    return MarkOutcome.NOT_FOUND
                if processed == "1":
                    return MarkOutcome.ALREADY_PROCESSED
                pipe.multi()
                pipe.hset(key, mapping={"processed": "1", "processed_at": utc_now().isoformat()})
                pipe.zrem(self._unprocessed_key, doc_id)
                pipe.sadd(self._processed_key, doc_id)
                await pipe.execute()
                return MarkOutcome.MARKED
        except WatchError:
            self._metrics.write_conflicts += 1
            # A concurrent mark that won the race leaves the record processed
            processed = await client.hget(key, "processed")
            if processed == "1":
                return MarkOutcome.ALREADY_PROCESSED
            if processed is None:
                return MarkOutcome.NOT_FOUND
            raise WriteConflictError(doc_id)

    async def mark_processed(self, doc_ids: Iterable[str]) -> list[str]:
        """Mark documents processed, one id at a time.

        Returns:
            Requested ids that are processed after the call, in request order.
        """
        requested = unique_ids(doc_ids)
        if not requested:
            return []
        client = await self._get_client()

        confirmed: list[str] = []
        failures: dict[str, Exception] = {}
        lost: StoreConnectionError | None = None

        for index, doc_id in enumerate(requested):
            try:
                outcome = await self._mark_one(client, doc_id)
            except _CONNECTION_ERRORS as e:
                # Nothing after this point can make progress on this call
                lost = await self._connection_lost(client, e)
                for remaining in requested[index:]:
                    failures[remaining] = lost
                self._metrics.failures += len(requested) - index
                break
            except (WriteConflictError, RedisError) as e:
                self._metrics.failures += 1
                failures[doc_id] = e
                logger.warning(
                    f"Failed to mark document {doc_id} as processed: {e}",
                    extra={"store": "redis", "operation": "mark_processed", "doc_id": doc_id},
                )
                continue

            if outcome is MarkOutcome.MARKED:
                self._metrics.documents_marked += 1
            if outcome.confirmed:
                confirmed.append(doc_id)

        if failures and len(failures) == len(requested):
            logger.error(
                f"Marking failed for all {len(failures)} document(s)",
                extra={"store": "redis", "operation": "mark_processed", "count": len(failures)},
            )
            if lost is not None and index == 0:
                raise lost
            raise BatchOperationError("mark_processed", failures)
        if lost is not None:
            logger.warning(
                f"Connection lost after confirming {len(confirmed)}/{len(requested)} document(s)",
                extra={"store": "redis", "operation": "mark_processed", "count": len(confirmed)},
            )

        logger.debug(
            f"Confirmed {len(confirmed)}/{len(requested)} document(s) as processed",
            extra={"store": "redis", "operation": "mark_processed", "count": len(confirmed)},
        )
        return confirmed

    async def _purge_one(self, client: Redis, doc_id: str) -> bool:
        """Delete one snapshot record if it is still processed.

        A record that was removed and saved again since the snapshot is
        unprocessed, so it is left in place. The stale index entry is dropped
        either way.

        Returns:
            True if a record was deleted.
        """
        key = self._doc_key(doc_id)
        for _ in range(2):
            try:
                async with client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    processed = await pipe.hget(key, "processed")
                    pipe.multi()
                    if processed == "1":
                        pipe.delete(key)
                    pipe.srem(self._processed_key, doc_id)
                    await pipe.execute()
                    return processed == "1"
            except WatchError:
                # Re-read and try once more
                self._metrics.write_conflicts += 1
        raise WriteConflictError(doc_id, f"Document {doc_id} kept changing during purge")

    async def purge(self) -> bool:
        """Delete the processed records captured at the start of the call.

        The delete set is read once from the processed index. Each snapshot
        record is then deleted on its own, and only while it is still
        processed, so a record processed after the snapshot is left for the
        next purge and a record saved again meanwhile is never lost.

        Returns:
            True if none of the snapshot records remain afterwards.
        """
        client = await self._get_client()
        try:
            snapshot = sorted(await client.smembers(self._processed_key))
        except _CONNECTION_ERRORS as e:
            raise await self._connection_lost(client, e) from e

        if not snapshot:
            return True

        deleted = 0
        failures: dict[str, Exception] = {}
        lost: StoreConnectionError | None = None
        for index, doc_id in enumerate(snapshot):
            try:
                if await self._purge_one(client, doc_id):
                    deleted += 1
                    self._metrics.documents_purged += 1
            except _CONNECTION_ERRORS as e:
                lost = await self._connection_lost(client, e)
                for remaining in snapshot[index:]:
                    failures[remaining] = lost
                self._metrics.failures += len(snapshot) - index
                break
            except (WriteConflictError, RedisError) as e:
                self._metrics.failures += 1
                failures[doc_id] = e
                logger.warning(
                    f"Failed to purge document {doc_id}: {e}",
                    extra={"store": "redis", "operation": "purge", "doc_id": doc_id},
                )

        if failures and len(failures) == len(snapshot):
            logger.error(
                f"Purge failed for all {len(failures)} document(s)",
                extra={"store": "redis", "operation": "purge", "count": len(failures)},
            )
            if lost is not None and index == 0:
                raise lost
            raise BatchOperationError("purge", failures)

        logger.info(
            f"Purged {deleted}/{len(snapshot)} processed document(s)",
            extra={"store": "redis", "operation": "purge", "count": deleted},
        )
        # A snapshot record is gone unless its own delete failed
        return not failures

    async def health(self) -> StoreHealth:
        """Check backend health."""
        start = time.monotonic()
        try:
            client = await self._get_client()
            await client.ping()
            unprocessed = await client.zcard(self._unprocessed_key)
            processed = await client.scard(self._processed_key)
            return StoreHealth(
                healthy=True,
                latency_ms=(time.monotonic() - start) * 1000,
                details={
                    "namespace": self._namespace,
                    "unprocessed": unprocessed,
                    "processed": processed,
                    "state": self._state.value,
                },
            )
        except Exception as e:
            return StoreHealth(
                healthy=False,
                latency_ms=(time.monotonic() - start) * 1000,
                details={"error": str(e), "state": self._state.value},
            )

    async def drop_collection(self) -> None:
        """Delete every key of this collection (for testing)."""
        client = await self._get_client()
        keys = [key async for key in client.scan_iter(match=f"{self._namespace}:*")]
        if keys:
            await client.delete(*keys)
        await client.srem(self._registry_key, self._registry_entry)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._state = ConnectionState.UNCONNECTED
            logger.info("Closed Redis connection", extra={"store": "redis"})
