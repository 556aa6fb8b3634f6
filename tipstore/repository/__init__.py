"""
Repositories: index + cache + content store composed per entity kind.

- ContentAddressedRepository: generic store/retrieve/update/delete/list
- TipHistoryRepository: whole-list storage for per-event tips

Invariants:
    - Reads degrade to stale data or None/empty; writes raise
"""

from .base import ContentAddressedRepository, EntityKind, RepositoryStats
from .entities import (
    EventRepository,
    SpeakerRepository,
    create_event_repository,
    create_speaker_repository,
    event_kind,
    speaker_kind,
    speaker_matches,
)
from .tips import EventTipStats, SpeakerTipTotal, TipHistoryRepository, tip_kind

__all__ = [
    "ContentAddressedRepository",
    "EntityKind",
    "RepositoryStats",
    "EventRepository",
    "SpeakerRepository",
    "create_event_repository",
    "create_speaker_repository",
    "event_kind",
    "speaker_kind",
    "speaker_matches",
    "TipHistoryRepository",
    "EventTipStats",
    "SpeakerTipTotal",
    "tip_kind",
]
