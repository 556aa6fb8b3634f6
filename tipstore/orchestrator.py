"""
StorageOrchestrator: the one entry point callers use.

Wires the content store, the local index/cache and the three repositories,
and exposes a facade with a uniform failure policy:

    - Reads degrade: stale cache, empty list or None, never an exception
    - Writes raise: TipStoreError subclasses propagate to the caller
    - Every call awaits initialization first

Initialization is single-flight. Concurrent callers share one in-progress
asyncio.Task; a failure clears it so the next call retries.

Lifecycle:
    - Ready means initialized and the content store still connected
    - close() ends the ready state and disconnects; the next facade call
      initializes again, so one orchestrator can be closed and reused
    - A content store that drops its connection is reconnected by the next
      facade call

Invariants:
    - No module-level instance; build one with create_orchestrator()
    - The orchestrator never retries a failed write

How to change safely:
    - New entity kinds get a repository here and a facade section below
    - Keep read methods free of raising paths
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Union

from .config import StorageConfig
from .content import ContentStore, create_content_backend
from .errors import InitializationFailedError
from .local import CacheStore, IndexStore, create_local_store
from .models import Event, SpeakerProfile, TipRecord, TipStatus, decode_model
from .repository import (
    EventRepository,
    EventTipStats,
    RepositoryStats,
    SpeakerRepository,
    TipHistoryRepository,
    create_event_repository,
    create_speaker_repository,
    speaker_matches,
)
from .subscriptions import PollingUpdateChannel, Subscription, UpdateCallback, UpdateChannel

logger = logging.getLogger(__name__)


@dataclass
class ContentStats:
    """Content network connection details.

    Attributes:
        address: Account address used for writes and public URLs
        network: Storage network name
        backend: Content backend kind ("memory", "gateway")
        connected: Whether the backend connection is open
    """

    address: str = ""
    network: str = ""
    backend: str = ""
    connected: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "network": self.network,
            "backend": self.backend,
            "connected": self.connected,
        }


@dataclass
class OrchestratorStats:
    """Snapshot of the orchestrator's state.

    Attributes:
        events: Event repository stats
        speakers: Speaker repository stats
        tips: Tip history repository stats
        content: Content network connection details
        is_ready: Whether the orchestrator is initialized and connected
        initialized_at: Unix timestamp of successful initialization
    """

    events: RepositoryStats = field(default_factory=RepositoryStats)
    speakers: RepositoryStats = field(default_factory=RepositoryStats)
    tips: RepositoryStats = field(default_factory=lambda: RepositoryStats(total_tips=0))
    content: ContentStats = field(default_factory=ContentStats)
    is_ready: bool = False
    initialized_at: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": self.events.to_dict(),
            "speakers": self.speakers.to_dict(),
            "tips": self.tips.to_dict(),
            "content": self.content.to_dict(),
            "is_ready": self.is_ready,
            "initialized_at": self.initialized_at,
        }


class StorageOrchestrator:
    """Facade over the event, speaker and tip repositories.

    Attributes:
        config: Storage configuration
        content: Content store shared by all repositories
        events: Event repository
        speakers: Speaker repository
        tips: Tip history repository
        channel: Update channel used by subscribe()

    Example:
        >>> orchestrator = create_orchestrator(StorageConfig())
        >>> await orchestrator.initialize()
        >>> await orchestrator.create_event({"id": "e1", "name": "DevCon"})
        >>> await orchestrator.get_events()
        [Event(id='e1', ...)]
        >>> await orchestrator.close()
    """

    def __init__(
        self,
        config: StorageConfig,
        content: ContentStore,
        index: IndexStore,
        cache: CacheStore,
        events: EventRepository,
        speakers: SpeakerRepository,
        tips: TipHistoryRepository,
        channel: Optional[UpdateChannel] = None,
    ) -> None:
        self.config = config
        self.content = content
        self.index = index
        self.cache = cache
        self.events = events
        self.speakers = speakers
        self.tips = tips
        self.channel: UpdateChannel = channel or PollingUpdateChannel(
            tips.retrieve_history, interval=config.poll_interval_seconds
        )

        self._ready = False
        self._initialized_at: Optional[float] = None
        self._init_task: Optional[asyncio.Task] = None

    # Lifecycle

    async def initialize(self) -> None:
        """Connect the content store and verify local state is readable.

        Raises:
            InitializationFailedError: If any step fails; a later call retries
        """
        if self.is_ready():
            return

        task = self._init_task
        if task is None or task.done():
            task = asyncio.create_task(self._initialize())
            self._init_task = task

        try:
            await asyncio.shield(task)
        except Exception as e:
            if self._init_task is task:
                self._init_task = None
            logger.error(f"Storage initialization failed: {e}")
            raise InitializationFailedError(f"Storage initialization failed: {e}") from e

    async def _initialize(self) -> None:
        logger.info("Initializing storage")
        await self.content.connect()
        await self.index.list_ids(self.events.name)
        self._ready = True
        self._initialized_at = time.time()
        logger.info(
            "Storage initialized",
            extra={"address": self.content.address, "initialized_at": self._initialized_at},
        )

    def is_ready(self) -> bool:
        return self._ready and self.content.is_connected

    async def close(self) -> None:
        """Cancel subscriptions and disconnect. initialize() may be called again."""
        await self.channel.close()
        await self.content.close()
        self._ready = False
        self._init_task = None
        logger.info("Storage closed")

    async def _ensure_initialized(self) -> None:
        if not self.is_ready():
            await self.initialize()

    async def _ensure_initialized_for_read(self) -> None:
        # Reads carry on against the local cache when initialization fails.
        try:
            await self._ensure_initialized()
        except InitializationFailedError as e:
            logger.warning(f"Reading from local state only: {e.message}")

    async def get_stats(self) -> OrchestratorStats:
        """Per-repository stats; a failing repository reports zeros."""
        await self._ensure_initialized_for_read()
        results = await asyncio.gather(
            self.events.stats(),
            self.speakers.stats(),
            self.tips.stats(),
            return_exceptions=True,
        )
        defaults = OrchestratorStats()
        resolved = []
        for name, result, default in zip(
            ("event", "speaker", "tip"),
            results,
            (defaults.events, defaults.speakers, defaults.tips),
        ):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to get {name} stats: {result}")
                resolved.append(default)
            else:
                resolved.append(result)

        return OrchestratorStats(
            events=resolved[0],
            speakers=resolved[1],
            tips=resolved[2],
            content=self._content_stats(),
            is_ready=self.is_ready(),
            initialized_at=self._initialized_at,
        )

    def _content_stats(self) -> ContentStats:
        try:
            return ContentStats(
                address=self.content.address,
                network=self.config.network,
                backend=self.config.content_backend.value,
                connected=self.content.is_connected,
            )
        except Exception as e:
            logger.warning(f"Failed to get content stats: {e}")
            return ContentStats()

    def subscribe(self, event_id: str, callback: UpdateCallback) -> Subscription:
        """Receive an event's tips periodically until the subscription is cancelled."""
        return self.channel.subscribe(event_id, callback)

    def public_url(self, cid: str) -> str:
        return self.content.resolve_public_url(cid)

    async def clear_all_cache(self) -> int:
        """Drop every cached entity. Index entries and blobs are kept."""
        counts = await asyncio.gather(
            self.events.clear_cache(),
            self.speakers.clear_cache(),
            self.tips.clear_cache(),
        )
        total = sum(counts)
        logger.info(f"Cleared {total} cache entries")
        return total

    # Events

    async def get_events(self) -> List[Event]:
        await self._ensure_initialized_for_read()
        return await self.events.list_all()

    async def get_event(self, event_id: str) -> Optional[Event]:
        await self._ensure_initialized_for_read()
        return await self.events.retrieve(event_id)

    async def create_event(self, event: Union[Event, Mapping[str, Any]]) -> str:
        await self._ensure_initialized()
        if not isinstance(event, Event):
            event = decode_model(Event, event)
        return await self.events.store(event)

    async def update_event(self, event_id: str, fields: Mapping[str, Any]) -> str:
        await self._ensure_initialized()
        return await self.events.update(event_id, fields)

    async def delete_event(self, event_id: str) -> bool:
        await self._ensure_initialized()
        return await self.events.delete(event_id)

    async def import_events(self, records: Iterable[Mapping[str, Any]]) -> List[str]:
        """Validate raw event records and store them.

        All records are validated before anything is written.

        Raises:
            ParseError: If any record is invalid
        """
        await self._ensure_initialized()
        events = [decode_model(Event, record) for record in records]
        cids = [await self.events.store(event) for event in events]
        logger.info(f"Imported {len(cids)} events")
        return cids

    # Speakers

    async def get_speakers(self, event_id: Optional[str] = None) -> List[SpeakerProfile]:
        """All speakers, or only those appearing at an event."""
        await self._ensure_initialized_for_read()
        if event_id is None:
            return await self.speakers.list_all()
        return await self.speakers.search(lambda speaker: event_id in speaker.event_ids)

    async def get_speaker(self, speaker_id: str) -> Optional[SpeakerProfile]:
        await self._ensure_initialized_for_read()
        return await self.speakers.retrieve(speaker_id)

    async def create_speaker(self, speaker: Union[SpeakerProfile, Mapping[str, Any]]) -> str:
        await self._ensure_initialized()
        if not isinstance(speaker, SpeakerProfile):
            speaker = decode_model(SpeakerProfile, speaker)
        return await self.speakers.store(speaker)

    async def update_speaker(self, speaker_id: str, fields: Mapping[str, Any]) -> str:
        await self._ensure_initialized()
        return await self.speakers.update(speaker_id, fields)

    async def search_speakers(self, query: str) -> List[SpeakerProfile]:
        """Case-insensitive match on name, title or bio; empty query lists all."""
        await self._ensure_initialized_for_read()
        if not query.strip():
            return await self.speakers.list_all()
        return await self.speakers.search(lambda speaker: speaker_matches(speaker, query))

    async def import_speakers(self, records: Iterable[Mapping[str, Any]]) -> List[str]:
        """Validate raw speaker records and store them.

        Raises:
            ParseError: If any record is invalid
        """
        await self._ensure_initialized()
        speakers = [decode_model(SpeakerProfile, record) for record in records]
        cids = [await self.speakers.store(speaker) for speaker in speakers]
        logger.info(f"Imported {len(cids)} speakers")
        return cids

    # Tips

    async def get_tip_history(self, event_id: str) -> List[TipRecord]:
        await self._ensure_initialized_for_read()
        return await self.tips.retrieve_history(event_id)

    async def add_tip(self, event_id: str, tip: Union[TipRecord, Mapping[str, Any]]) -> str:
        await self._ensure_initialized()
        return await self.tips.add_tip(event_id, tip)

    async def update_tip_status(
        self,
        event_id: str,
        tip_id: str,
        status: Union[TipStatus, str],
        tx_hash: Optional[str] = None,
    ) -> str:
        await self._ensure_initialized()
        return await self.tips.update_tip_status(event_id, tip_id, status, tx_hash)

    async def get_recent_tips(self, limit: Optional[int] = 50) -> List[TipRecord]:
        await self._ensure_initialized_for_read()
        return await self.tips.get_recent_tips(limit)

    async def get_tips_for_speaker(self, speaker_id: str) -> List[TipRecord]:
        await self._ensure_initialized_for_read()
        return await self.tips.get_tips_for_speaker(speaker_id)

    async def get_event_tip_stats(self, event_id: str) -> EventTipStats:
        await self._ensure_initialized_for_read()
        return await self.tips.event_stats(event_id)


def create_orchestrator(config: Optional[StorageConfig] = None) -> StorageOrchestrator:
    """Build an orchestrator and its backends from configuration.

    Raises:
        ConfigurationError: If the configuration is inconsistent
    """
    config = config or StorageConfig()
    config.validate_settings()

    content = ContentStore(
        create_content_backend(config),
        max_payload_bytes=config.max_payload_bytes,
        url_template=config.public_url_template,
    )
    local = create_local_store(config)
    index = IndexStore(local, prefix=config.key_prefix)
    cache = CacheStore(local, prefix=config.key_prefix)

    return StorageOrchestrator(
        config=config,
        content=content,
        index=index,
        cache=cache,
        events=create_event_repository(content, index, cache, config.event_ttl_seconds),
        speakers=create_speaker_repository(content, index, cache, config.speaker_ttl_seconds),
        tips=TipHistoryRepository(content, index, cache, config.tip_ttl_seconds),
    )
