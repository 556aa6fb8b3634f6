"""Entity kinds for events and speaker profiles."""

from __future__ import annotations

from ..content import ContentStore
from ..local import CacheStore, IndexStore
from ..models import Event, SpeakerProfile
from .base import ContentAddressedRepository, EntityKind

EVENT_TTL_SECONDS = 5 * 60
SPEAKER_TTL_SECONDS = 10 * 60

EventRepository = ContentAddressedRepository[Event]
SpeakerRepository = ContentAddressedRepository[SpeakerProfile]


def event_kind(ttl_seconds: float = EVENT_TTL_SECONDS) -> EntityKind[Event]:
    # Events list by start time, newest first.
    return EntityKind(
        name="event",
        model=Event,
        ttl_seconds=ttl_seconds,
        sort_key=lambda event: event.start_time,
    )


def speaker_kind(ttl_seconds: float = SPEAKER_TTL_SECONDS) -> EntityKind[SpeakerProfile]:
    # Speakers list by most recent write.
    return EntityKind(name="speaker", model=SpeakerProfile, ttl_seconds=ttl_seconds)


def create_event_repository(
    content: ContentStore,
    index: IndexStore,
    cache: CacheStore,
    ttl_seconds: float = EVENT_TTL_SECONDS,
) -> EventRepository:
    return ContentAddressedRepository(event_kind(ttl_seconds), content, index, cache)


def create_speaker_repository(
    content: ContentStore,
    index: IndexStore,
    cache: CacheStore,
    ttl_seconds: float = SPEAKER_TTL_SECONDS,
) -> SpeakerRepository:
    return ContentAddressedRepository(speaker_kind(ttl_seconds), content, index, cache)


def speaker_matches(speaker: SpeakerProfile, query: str) -> bool:
    """Case-insensitive substring match on name, title and bio."""
    needle = query.lower()
    return (
        needle in speaker.name.lower()
        or needle in speaker.title.lower()
        or needle in speaker.bio.lower()
    )
