"""Pytest configuration, Hypothesis profiles and store fixtures."""

import uuid

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from hypothesis import settings
from redis.asyncio import Redis

from doccache.backends.memory import InMemoryDocumentStore
from doccache.backends.redis_backend import RedisDocumentStore

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100)
settings.register_profile("dev", max_examples=20)

# Load dev profile by default, CI can override via --hypothesis-profile=ci
settings.load_profile("dev")

REDIS_URL = "redis://localhost:6379"


def redis_available() -> bool:
    """Check if Redis is available at localhost:6379."""
    try:
        import redis

        client = redis.Redis(host="localhost", port=6379, socket_connect_timeout=0.5)
        client.ping()
        client.close()
        return True
    except Exception:
        return False


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio as the async backend for pytest-asyncio."""
    return "asyncio"


REDIS_SKIP_REASON = "Redis not available at localhost:6379. Start with: docker run -p 6379:6379 redis"


def make_redis_store() -> RedisDocumentStore:
    """RedisDocumentStore on a unique collection."""
    return RedisDocumentStore(
        connection_string=REDIS_URL,
        database_name="doccache-test",
        collection_name=f"docs-{uuid.uuid4().hex[:8]}",
    )


async def dispose_redis_store(store: RedisDocumentStore) -> None:
    try:
        await store.drop_collection()
    except Exception:
        pass
    await store.close()


class FakeRedisDocumentStore(RedisDocumentStore):
    """RedisDocumentStore whose connections go to an in-process fakeredis server.

    Stores built on the same FakeServer see the same data, like stores
    pointed at one Redis instance.
    """

    def __init__(self, server: FakeServer, database_name: str, collection_name: str, **kwargs):
        super().__init__("redis://fakeredis:6379", database_name, collection_name, **kwargs)
        self.server = server

    def _new_client(self) -> Redis:
        return FakeRedis(server=self.server, decode_responses=True)


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
async def fake_store(fake_server):
    """RedisDocumentStore on a fresh fakeredis server."""
    store = FakeRedisDocumentStore(fake_server, "doccache-test", "docs")
    yield store
    await store.close()


@pytest.fixture
async def redis_store():
    """RedisDocumentStore on a unique collection, dropped after the test."""
    if not redis_available():
        pytest.skip(REDIS_SKIP_REASON)
    store = make_redis_store()
    yield store
    await dispose_redis_store(store)


@pytest.fixture(params=["memory", "fakeredis", "redis"])
async def store(request):
    """Every DocumentStore implementation, for contract tests."""
    if request.param == "memory":
        store = InMemoryDocumentStore(
            connection_string="memory://",
            database_name="doccache-test",
            collection_name="docs",
        )
        yield store
        await store.close()
    elif request.param == "fakeredis":
        store = FakeRedisDocumentStore(FakeServer(), "doccache-test", "docs")
        yield store
        await store.close()
    else:
        if not redis_available():
            pytest.skip(REDIS_SKIP_REASON)
        store = make_redis_store()
        yield store
        await dispose_redis_store(store)
