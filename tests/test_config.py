"""Tests for StoreSettings and create_store."""

import os

import pytest
from pydantic import ValidationError

from doccache.backends.memory import InMemoryDocumentStore
from doccache.backends.redis_backend import ConnectionState, RedisDocumentStore
from doccache.core.config import StoreSettings, create_store
from doccache.core.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep DOCCACHE_ variables from the outer environment out of these tests."""
    for name in list(os.environ):
        if name.startswith("DOCCACHE_") or name.startswith("OUTBOX_"):
            monkeypatch.delenv(name)


def test_defaults_select_memory_backend():
    settings = StoreSettings()

    assert settings.backend == "memory"
    assert settings.database_name == "doccache"
    assert settings.collection_name == "documents"


def test_build_reads_prefixed_variables(monkeypatch):
    monkeypatch.setenv("DOCCACHE_BACKEND", "redis")
    monkeypatch.setenv("DOCCACHE_CONNECTION_STRING", "redis://cache:6379/1")
    monkeypatch.setenv("DOCCACHE_DATABASE_NAME", "orders")
    monkeypatch.setenv("DOCCACHE_COLLECTION_NAME", "outbox")
    monkeypatch.setenv("DOCCACHE_POOL_SIZE", "4")
    monkeypatch.setenv("UNRELATED", "ignored")

    settings = StoreSettings.build()

    assert settings.backend == "redis"
    assert settings.connection_string == "redis://cache:6379/1"
    assert settings.database_name == "orders"
    assert settings.collection_name == "outbox"
    assert settings.pool_size == 4
    assert settings.key_prefix == "doccache"


def test_keyword_arguments_override_environment(monkeypatch):
    monkeypatch.setenv("DOCCACHE_DATABASE_NAME", "from-env")

    assert StoreSettings().database_name == "from-env"
    assert StoreSettings(database_name="explicit").database_name == "explicit"


def test_build_custom_prefix(monkeypatch):
    monkeypatch.setenv("OUTBOX_COLLECTION_NAME", "events")
    monkeypatch.setenv("DOCCACHE_COLLECTION_NAME", "ignored")

    settings = StoreSettings.build(_env_prefix="OUTBOX_")
    assert settings.collection_name == "events"


def test_invalid_environment_raises_configuration_error(monkeypatch):
    monkeypatch.setenv("DOCCACHE_POOL_SIZE", "zero")
    with pytest.raises(ConfigurationError):
        StoreSettings.build()


def test_settings_are_frozen():
    settings = StoreSettings()
    with pytest.raises(ValidationError):
        settings.database_name = "other"  # type: ignore[misc]


def test_redis_backend_requires_connection_string(monkeypatch):
    monkeypatch.setenv("DOCCACHE_BACKEND", "redis")
    with pytest.raises(ConfigurationError, match="CONNECTION_STRING"):
        StoreSettings.build()


@pytest.mark.parametrize(
    "values",
    [
        {"backend": "cosmos"},
        {"database_name": "  "},
        {"collection_name": ""},
        {"pool_size": 0},
        {"unknown": "field"},
    ],
)
def test_invalid_settings_raise_configuration_error(values):
    with pytest.raises(ConfigurationError):
        StoreSettings.build(**values)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        StoreSettings.build(pool_size=-1)


def test_create_store_defaults_to_memory():
    store = create_store()
    assert isinstance(store, InMemoryDocumentStore)


def test_create_store_without_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("DOCCACHE_BACKEND", "redis")
    monkeypatch.setenv("DOCCACHE_CONNECTION_STRING", "redis://localhost:1")
    monkeypatch.setenv("DOCCACHE_COLLECTION_NAME", "outbox")

    store = create_store()

    assert isinstance(store, RedisDocumentStore)
    assert store.collection_name == "outbox"


def test_create_store_passes_address_to_memory_store():
    store = create_store(StoreSettings(database_name="orders", collection_name="outbox"))

    assert store.database_name == "orders"
    assert store.collection_name == "outbox"


def test_create_store_redis_is_lazy():
    settings = StoreSettings(
        backend="redis",
        connection_string="redis://localhost:1",
        database_name="orders",
        collection_name="outbox",
    )

    store = create_store(settings, data_type=dict)

    assert isinstance(store, RedisDocumentStore)
    assert store.state is ConnectionState.UNCONNECTED
    assert store.connection_string == "redis://localhost:1"
    assert store.database_name == "orders"
    assert store.collection_name == "outbox"
