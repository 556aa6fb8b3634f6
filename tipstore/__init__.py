"""
tipstore - Content-addressed storage for events, speakers and tips.

This package keeps event, speaker-profile and tip-history records on an
immutable content-addressed network and makes them usable as mutable
entities through a local index and cache:
- ContentStore writes/reads immutable blobs addressed by CID
- IndexStore maps each entity id to the CID of its latest write
- CacheStore keeps the last materialized value with a per-kind TTL
- Repositories compose the three per entity kind
- StorageOrchestrator exposes one facade with a uniform failure policy

Architecture:
    ┌─────────────┐     ┌──────────────────────┐
    │   Caller    │────▶│ StorageOrchestrator  │
    │ (app / CLI) │     │  (facade, init, subs)│
    └─────────────┘     └──────────┬───────────┘
                                   │
              ┌────────────────────┼────────────────────┐
              ▼                    ▼                    ▼
        ┌──────────┐         ┌──────────┐         ┌───────────┐
        │  Events  │         │ Speakers │         │TipHistory │
        │   repo   │         │   repo   │         │   repo    │
        └────┬─────┘         └────┬─────┘         └─────┬─────┘
             └────────────────────┼─────────────────────┘
                   ┌──────────────┼──────────────┐
                   ▼              ▼              ▼
             ┌──────────┐   ┌──────────┐   ┌────────────┐
             │  Index   │   │  Cache   │   │  Content   │
             │ (local)  │   │ (local)  │   │   store    │
             └────┬─────┘   └────┬─────┘   └─────┬──────┘
                  └──────┬───────┘               ▼
                         ▼               content network
                  SQLite / memory        (gateway / memory)

Invariants:
    - Blobs are immutable; an update is a new blob plus an index move
    - The index alone decides which blob is current for an id
    - Reads degrade to stale or empty results; writes raise
    - Superseded blobs are never deleted

How to change safely:
    - Bump SCHEMA_VERSION only together with a reader for the old version
    - Add entity kinds through EntityKind, not new repository classes
"""

from ._version import __version__
from .config import StorageConfig
from .errors import (
    ConfigurationError,
    ContentStoreError,
    ContentWriteError,
    InitializationFailedError,
    InsufficientAllowanceError,
    NotFoundError,
    NotRetrievableError,
    ParseError,
    PayloadTooLargeError,
    TipStoreError,
)
from .models import Event, SpeakerProfile, TipHistory, TipRecord, TipStatus
from .orchestrator import (
    ContentStats,
    OrchestratorStats,
    StorageOrchestrator,
    create_orchestrator,
)
from .subscriptions import PollingUpdateChannel, Subscription, TipUpdate, UpdateChannel

__all__ = [
    "__version__",
    "StorageConfig",
    # Facade
    "StorageOrchestrator",
    "OrchestratorStats",
    "ContentStats",
    "create_orchestrator",
    # Models
    "Event",
    "SpeakerProfile",
    "TipHistory",
    "TipRecord",
    "TipStatus",
    # Subscriptions
    "PollingUpdateChannel",
    "Subscription",
    "TipUpdate",
    "UpdateChannel",
    # Errors
    "TipStoreError",
    "ContentStoreError",
    "PayloadTooLargeError",
    "InsufficientAllowanceError",
    "ContentWriteError",
    "NotRetrievableError",
    "NotFoundError",
    "ParseError",
    "InitializationFailedError",
    "ConfigurationError",
]
