"""
Domain models and the storage envelope.

Entities are pydantic models so that everything read back from the content
network or the local cache is validated before use. Timestamps on domain
records are Unix milliseconds (as produced by the chain and the clients);
envelope and index bookkeeping use Unix seconds.

Envelope format (JSON, one per stored blob):
    {"schema_version": "1.0", "kind": "event", "written_at": 1.7e9,
     "last_updated": 1.7e9, "data": {...entity fields...}}

Invariants:
    - Only schema_version "1.0" is accepted on read
    - An envelope's kind must match the repository reading it
    - Entity ids are caller-assigned and immutable
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ParseError

SCHEMA_VERSION = "1.0"

ModelT = TypeVar("ModelT", bound=BaseModel)


class Event(BaseModel):
    """An event attendees can tip speakers at."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    start_time: int = 0
    end_time: int = 0
    location: str = ""
    organizer: str = ""
    is_active: bool = True
    speaker_ids: list[str] = Field(default_factory=list)
    speaker_count: int = 0
    attendee_count: int = 0


class SpeakerProfile(BaseModel):
    """A speaker or performer who can receive tips."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    name: str
    title: str = ""
    bio: str = ""
    profile_image: str = ""
    wallet_address: str = ""
    event_ids: list[str] = Field(default_factory=list)
    is_active: bool = True


class TipStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TipRecord(BaseModel):
    """A single tip, as recorded in an event's history."""

    id: str = Field(min_length=1)
    event_id: str
    speaker_id: str
    speaker_name: str = ""
    tipper: str
    tipper_name: Optional[str] = None
    amount: float = Field(ge=0)
    currency: str = "USDC"
    message: Optional[str] = None
    timestamp: int
    tx_hash: Optional[str] = None
    chain_id: Optional[int] = None
    status: TipStatus = TipStatus.PENDING


class TipHistory(BaseModel):
    """All tips for one event; stored and rewritten as a single blob."""

    event_id: str = Field(min_length=1)
    tips: list[TipRecord] = Field(default_factory=list)
    last_updated: float = Field(default_factory=time.time)

    @property
    def id(self) -> str:
        return self.event_id


class StorageEnvelope(BaseModel):
    """Versioned wrapper around an entity's fields."""

    model_config = ConfigDict(extra="forbid")

    schema_version: Literal["1.0"] = SCHEMA_VERSION
    kind: str
    written_at: float
    last_updated: float
    data: dict[str, Any]


def encode_entity(kind: str, entity: BaseModel, now: Optional[float] = None) -> bytes:
    """Wrap an entity in an envelope and serialize it to compact JSON bytes."""
    ts = time.time() if now is None else now
    envelope = StorageEnvelope(
        kind=kind,
        written_at=ts,
        last_updated=ts,
        data=entity.model_dump(mode="json"),
    )
    return envelope.model_dump_json().encode("utf-8")


def decode_envelope(payload: bytes, kind: str) -> StorageEnvelope:
    """Parse and validate an envelope.

    Raises:
        ParseError: On malformed JSON, unknown schema version, or kind mismatch
    """
    try:
        envelope = StorageEnvelope.model_validate(json.loads(payload.decode("utf-8")))
    except (ValueError, ValidationError) as e:
        raise ParseError(f"Invalid {kind} envelope: {e}") from e
    if envelope.kind != kind:
        raise ParseError(f"Envelope kind mismatch: expected {kind}, got {envelope.kind}")
    return envelope


def decode_model(model: Type[ModelT], data: Any, source: Optional[str] = None) -> ModelT:
    """Validate raw fields into a model, mapping failures to ParseError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Invalid {model.__name__}: {e}", key=source) from e
