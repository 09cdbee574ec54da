"""Store configuration and backend factory."""

from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from doccache.core.errors import ConfigurationError

if TYPE_CHECKING:
    from doccache.backends.base import DocumentStore

ENV_PREFIX = "DOCCACHE_"


class StoreSettings(BaseSettings):
    """Construction-time configuration of a document store.

    Unset fields are read from DOCCACHE_-prefixed environment variables
    (DOCCACHE_BACKEND, DOCCACHE_DATABASE_NAME, ...) and then fall back to
    the defaults below. Keyword arguments take precedence over both.

    Attributes:
        backend: "memory" or "redis".
        connection_string: Backend connection descriptor (Redis URL for the
            redis backend, informational for memory).
        database_name: Database part of the store address.
        collection_name: Collection part of the store address.
        key_prefix: Key prefix for the redis backend.
        pool_size: Connection pool size for the redis backend.
    """

    backend: Literal["memory", "redis"] = "memory"
    connection_string: str = ""
    database_name: str = "doccache"
    collection_name: str = "documents"
    key_prefix: str = "doccache"
    pool_size: int = 10

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        extra="forbid",
        frozen=True,
    )

    @field_validator("database_name", "collection_name", "key_prefix")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("pool_size")
    @classmethod
    def validate_pool_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_connection(self) -> "StoreSettings":
        if self.backend == "redis" and not self.connection_string:
            raise ValueError(
                f"connection_string ({ENV_PREFIX}CONNECTION_STRING) must be set when backend is 'redis'"
            )
        return self

    @classmethod
    def build(cls, **values: Any) -> "StoreSettings":
        """Load settings from keyword arguments and the environment.

        Pass `_env_prefix` to read variables under a different prefix.

        Raises:
            ConfigurationError: If the resulting settings are invalid.
        """
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid store settings: {e}") from e


def create_store(settings: StoreSettings | None = None, data_type: Any = Any) -> "DocumentStore[Any]":
    """Instantiate the configured document store.

    No connection is made here; durable stores connect on first use.

    Args:
        settings: Store settings. Defaults to settings loaded from the
            environment, which select an in-memory store when nothing is set.
        data_type: Payload type, used by backends that serialize payloads.
    """
    settings = settings or StoreSettings.build()

    if settings.backend == "memory":
        from doccache.backends.memory import InMemoryDocumentStore

        return InMemoryDocumentStore(
            connection_string=settings.connection_string,
            database_name=settings.database_name,
            collection_name=settings.collection_name,
        )

    if settings.backend == "redis":
        from doccache.backends.redis_backend import RedisDocumentStore

        return RedisDocumentStore(
            connection_string=settings.connection_string,
            database_name=settings.database_name,
            collection_name=settings.collection_name,
            data_type=data_type,
            key_prefix=settings.key_prefix,
            pool_size=settings.pool_size,
        )

    raise ConfigurationError(f"Unsupported store backend: {settings.backend!r}")
