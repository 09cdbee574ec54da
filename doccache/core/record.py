"""Document record model for doccache."""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(UTC)


class DocumentRecord(BaseModel, Generic[T]):
    """Stored unit: caller payload plus processing metadata.

    Records are immutable. A processing transition produces a new record via
    as_processed(); stores swap the old record for the new one.

    Attributes:
        id: Caller-supplied identifier, unique within a store's
            (database, collection) scope. Case-sensitive, kept verbatim.
        data: Opaque payload owned by the caller.
        created_at: UTC insertion time, never changed afterwards.
        processed: False until the record is marked processed; never reset.
        processed_at: UTC time of the processed transition, None while
            processed is False.
    """

    id: str
    data: T
    created_at: datetime = Field(default_factory=utc_now)
    processed: bool = False
    processed_at: datetime | None = None

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Ensure id is not empty or whitespace only."""
        if not v.strip():
            raise ValueError("id must not be empty")
        return v

    @model_validator(mode="after")
    def validate_processed_at(self) -> "DocumentRecord[T]":
        """processed_at must be present exactly when processed is True."""
        if self.processed and self.processed_at is None:
            raise ValueError("processed_at is required when processed is True")
        if not self.processed and self.processed_at is not None:
            raise ValueError("processed_at must be unset while processed is False")
        return self

    def as_processed(self, at: datetime | None = None) -> "DocumentRecord[T]":
        """Return the processed form of this record.

        Already-processed records are returned unchanged so processed_at is
        only ever stamped once.
        """
        if self.processed:
            return self
        return self.model_copy(update={"processed": True, "processed_at": at or utc_now()})


@dataclass(frozen=True)
class Found(Generic[T]):
    """Explicit 'present' result of DocumentStore.get().

    get() returns None when no record exists, so a stored payload of None,
    {} or "" is still distinguishable from a missing document.
    """

    data: T
