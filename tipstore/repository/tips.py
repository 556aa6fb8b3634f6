"""
Tip history repository.

The unit of storage is an event's whole tip list. Every mutation reads the
list, edits it in memory and rewrites it as a new blob, so add_tip() costs
O(n) in the number of existing tips. Cross-event queries visit every
indexed event; there is no secondary index by speaker.

Invariants:
    - Tips in a history are unique by id (last write wins) and newest first
    - Aggregates are derived from the materialized list, never persisted
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Union

from pydantic import BaseModel, Field

from ..content import ContentStore
from ..errors import NotFoundError
from ..local import CacheStore, IndexStore
from ..models import TipHistory, TipRecord, TipStatus, decode_model
from .base import ContentAddressedRepository, EntityKind, RepositoryStats

logger = logging.getLogger(__name__)

TIP_TTL_SECONDS = 2 * 60
TOP_SPEAKER_LIMIT = 10


class SpeakerTipTotal(BaseModel):
    speaker_id: str
    speaker_name: str = ""
    amount: float = 0.0
    tip_count: int = 0


class EventTipStats(BaseModel):
    """Aggregates over an event's confirmed tips."""

    total_tips: int = 0
    total_amount: float = 0.0
    unique_tippers: int = 0
    top_speakers: List[SpeakerTipTotal] = Field(default_factory=list)


def tip_kind(ttl_seconds: float = TIP_TTL_SECONDS) -> EntityKind[TipHistory]:
    return EntityKind(name="tip", model=TipHistory, ttl_seconds=ttl_seconds, id_field="event_id")


def newest_first(tips: List[TipRecord]) -> List[TipRecord]:
    # Stable, so a freshly prepended tip stays ahead of equal timestamps.
    return sorted(tips, key=lambda tip: tip.timestamp, reverse=True)


class TipHistoryRepository(ContentAddressedRepository[TipHistory]):
    """Per-event tip lists plus cross-event tip queries.

    Example:
        >>> tips = TipHistoryRepository(content, index, cache)
        >>> await tips.add_tip("e1", TipRecord(id="t1", event_id="e1", ...))
        >>> await tips.retrieve_history("e1")
        [TipRecord(id='t1', ...)]
    """

    def __init__(
        self,
        content: ContentStore,
        index: IndexStore,
        cache: CacheStore,
        ttl_seconds: float = TIP_TTL_SECONDS,
    ) -> None:
        super().__init__(tip_kind(ttl_seconds), content, index, cache)

    def _item_count(self, entity: TipHistory) -> Optional[int]:
        return len(entity.tips)

    async def retrieve_history(self, event_id: str) -> List[TipRecord]:
        """Tips for an event, newest first; empty if unknown. Never raises."""
        history = await self.retrieve(event_id)
        if history is None:
            return []
        return list(history.tips)

    async def store_history(self, event_id: str, tips: List[TipRecord]) -> str:
        """Replace an event's whole tip list."""
        history = TipHistory(event_id=event_id, tips=newest_first(tips))
        logger.info(f"Storing tip history for event {event_id} ({len(tips)} tips)")
        return await self.store(history)

    async def add_tip(
        self,
        event_id: str,
        tip: Union[TipRecord, Mapping[str, Any]],
    ) -> str:
        """Add or replace a tip in an event's history.

        Raises:
            ParseError: If tip is not a valid TipRecord
            ValueError: If the tip belongs to another event
        """
        if not isinstance(tip, TipRecord):
            tip = decode_model(TipRecord, tip)
        if tip.event_id != event_id:
            raise ValueError(f"Tip {tip.id} belongs to event {tip.event_id}, not {event_id}")

        existing = await self.retrieve_history(event_id)
        tips = [t for t in existing if t.id != tip.id]
        tips.insert(0, tip)

        logger.info(
            "Adding tip",
            extra={"event_id": event_id, "tip_id": tip.id, "amount": tip.amount, "tipper": tip.tipper},
        )
        return await self.store_history(event_id, tips)

    async def update_tip_status(
        self,
        event_id: str,
        tip_id: str,
        status: Union[TipStatus, str],
        tx_hash: Optional[str] = None,
    ) -> str:
        """Change a tip's status (e.g. pending -> confirmed).

        Raises:
            NotFoundError: If the tip is not in the event's history
        """
        tips = await self.retrieve_history(event_id)
        for position, tip in enumerate(tips):
            if tip.id == tip_id:
                break
        else:
            raise NotFoundError(
                f"Tip {tip_id} not found in event {event_id}",
                resource_type="tip",
                resource_id=tip_id,
            )

        changes: dict[str, Any] = {"status": TipStatus(status)}
        if tx_hash:
            changes["tx_hash"] = tx_hash
        tips[position] = tip.model_copy(update=changes)
        return await self.store_history(event_id, tips)

    async def get_tips_for_speaker(self, speaker_id: str) -> List[TipRecord]:
        """Tips for a speaker across every known event, newest first."""
        tips = [tip for tip in await self._all_tips() if tip.speaker_id == speaker_id]
        return newest_first(tips)

    async def get_recent_tips(self, limit: Optional[int] = 50) -> List[TipRecord]:
        """Latest tips across every known event.

        Raises:
            ValueError: If limit is negative
        """
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        tips = newest_first(await self._all_tips())
        return tips if limit is None else tips[:limit]

    async def event_stats(self, event_id: str) -> EventTipStats:
        """Aggregate counts over confirmed tips. Never raises."""
        confirmed = [
            tip
            for tip in await self.retrieve_history(event_id)
            if tip.status == TipStatus.CONFIRMED
        ]

        speakers: dict[str, SpeakerTipTotal] = {}
        for tip in confirmed:
            total = speakers.setdefault(
                tip.speaker_id,
                SpeakerTipTotal(speaker_id=tip.speaker_id, speaker_name=tip.speaker_name),
            )
            total.amount += tip.amount
            total.tip_count += 1

        top = sorted(speakers.values(), key=lambda s: s.amount, reverse=True)
        return EventTipStats(
            total_tips=len(confirmed),
            total_amount=sum(tip.amount for tip in confirmed),
            unique_tippers=len({tip.tipper for tip in confirmed}),
            top_speakers=top[:TOP_SPEAKER_LIMIT],
        )

    async def stats(self) -> RepositoryStats:
        stats = await super().stats()
        entries = await self.index.entries(self.kind.name)
        stats.total_tips = sum(entry.item_count or 0 for entry in entries.values())
        return stats

    async def _all_tips(self) -> List[TipRecord]:
        try:
            event_ids = await self.index.list_ids(self.kind.name)
        except Exception as e:
            logger.error(f"Failed to read tip index: {e}")
            return []

        results = await asyncio.gather(
            *(self.retrieve_history(event_id) for event_id in event_ids),
            return_exceptions=True,
        )
        tips: List[TipRecord] = []
        for event_id, result in zip(event_ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to get tips for event {event_id}: {result}")
            else:
                tips.extend(result)
        return tips
