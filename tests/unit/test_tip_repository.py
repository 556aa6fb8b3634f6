"""
Unit tests for TipHistoryRepository.

Tests cover:
- add_tip de-duplication and ordering
- Status updates
- Cross-event queries with failing events
- Confirmed-tip aggregates
"""

import asyncio

import pytest

from tipstore.content import ContentStore, InMemoryContentBackend
from tipstore.errors import NotFoundError, ParseError
from tipstore.local import CacheStore, IndexStore, InMemoryLocalStore
from tipstore.models import TipRecord, TipStatus
from tipstore.repository import TipHistoryRepository


def make_tip(tip_id, event_id="e1", speaker_id="s1", amount=1.0, timestamp=1000, **kwargs):
    return TipRecord(
        id=tip_id,
        event_id=event_id,
        speaker_id=speaker_id,
        speaker_name=kwargs.pop("speaker_name", speaker_id.upper()),
        tipper=kwargs.pop("tipper", "0xaaa"),
        amount=amount,
        timestamp=timestamp,
        **kwargs,
    )


class TestTipHistoryRepository:
    """Tests for TipHistoryRepository."""

    @pytest.fixture
    def backend(self):
        return InMemoryContentBackend()

    @pytest.fixture
    def tips(self, backend):
        local = InMemoryLocalStore()
        return TipHistoryRepository(ContentStore(backend), IndexStore(local), CacheStore(local))

    @pytest.mark.asyncio
    async def test_unknown_event_is_empty(self, tips):
        await tips.content.connect()
        assert await tips.retrieve_history("nope") == []

    @pytest.mark.asyncio
    async def test_add_tip_prepends(self, tips):
        await tips.content.connect()
        await tips.add_tip("e1", make_tip("t1", timestamp=1000))
        await tips.add_tip("e1", make_tip("t2", timestamp=2000))

        history = await tips.retrieve_history("e1")
        assert [t.id for t in history] == ["t2", "t1"]

    @pytest.mark.asyncio
    async def test_add_tip_deduplicates_by_id(self, tips):
        """Re-adding a tip id replaces the earlier record."""
        await tips.content.connect()
        await tips.add_tip("e1", make_tip("t1", amount=1.0))
        await tips.add_tip("e1", make_tip("t2"))
        await tips.add_tip("e1", make_tip("t1", amount=9.0))

        history = await tips.retrieve_history("e1")
        assert sorted(t.id for t in history) == ["t1", "t2"]
        assert [t.amount for t in history if t.id == "t1"] == [9.0]

    @pytest.mark.asyncio
    async def test_add_tip_accepts_mapping(self, tips):
        await tips.content.connect()
        await tips.add_tip("e1", make_tip("t1").model_dump())
        assert len(await tips.retrieve_history("e1")) == 1

    @pytest.mark.asyncio
    async def test_add_tip_rejects_invalid(self, tips):
        await tips.content.connect()
        with pytest.raises(ParseError):
            await tips.add_tip("e1", {"id": "t1"})
        with pytest.raises(ValueError):
            await tips.add_tip("e1", make_tip("t1", event_id="e2"))

    @pytest.mark.asyncio
    async def test_store_history_orders_and_counts(self, tips):
        await tips.content.connect()
        await tips.store_history(
            "e1", [make_tip("old", timestamp=1), make_tip("new", timestamp=3), make_tip("mid", timestamp=2)]
        )

        assert [t.id for t in await tips.retrieve_history("e1")] == ["new", "mid", "old"]
        entry = await tips.index.get("tip", "e1")
        assert entry.item_count == 3

    @pytest.mark.asyncio
    async def test_concurrent_add_tip_lost_update(self, tips, backend):
        """Two concurrent add_tip calls on one event: the later index write wins."""
        await tips.content.connect()
        await tips.add_tip("e1", make_tip("t0"))
        backend.queue_upload_delays(0.05, 0.0)

        await asyncio.gather(
            tips.add_tip("e1", make_tip("t1")),
            tips.add_tip("e1", make_tip("t2")),
        )

        await tips.clear_cache()
        ids = {t.id for t in await tips.retrieve_history("e1")}
        assert ids == {"t0", "t1"}

    @pytest.mark.asyncio
    async def test_update_tip_status(self, tips):
        await tips.content.connect()
        await tips.add_tip("e1", make_tip("t1"))

        await tips.update_tip_status("e1", "t1", "confirmed", tx_hash="0xfeed")

        [tip] = await tips.retrieve_history("e1")
        assert tip.status == TipStatus.CONFIRMED
        assert tip.tx_hash == "0xfeed"

    @pytest.mark.asyncio
    async def test_update_tip_status_missing(self, tips):
        await tips.content.connect()
        await tips.add_tip("e1", make_tip("t1"))
        with pytest.raises(NotFoundError) as exc_info:
            await tips.update_tip_status("e1", "nope", TipStatus.FAILED)
        assert exc_info.value.resource_type == "tip"

    @pytest.mark.asyncio
    async def test_cross_event_queries(self, tips, backend):
        """A failing event is skipped; others are still returned."""
        await tips.content.connect()
        await tips.add_tip("e1", make_tip("a", event_id="e1", speaker_id="s1", timestamp=1))
        await tips.add_tip("e2", make_tip("b", event_id="e2", speaker_id="s1", timestamp=3))
        await tips.add_tip("e2", make_tip("c", event_id="e2", speaker_id="s2", timestamp=2))
        cid_e3 = await tips.add_tip("e3", make_tip("d", event_id="e3", speaker_id="s1", timestamp=4))
        await tips.clear_cache()
        backend.fail_cid(cid_e3)

        assert [t.id for t in await tips.get_tips_for_speaker("s1")] == ["b", "a"]
        assert [t.id for t in await tips.get_recent_tips()] == ["b", "c", "a"]
        assert [t.id for t in await tips.get_recent_tips(limit=1)] == ["b"]

    @pytest.mark.asyncio
    async def test_recent_tips_limit_bounds(self, tips):
        """A zero limit is empty; a negative limit is rejected."""
        await tips.content.connect()
        await tips.add_tip("e1", make_tip("a", timestamp=1))
        await tips.add_tip("e1", make_tip("b", timestamp=2))

        assert await tips.get_recent_tips(limit=0) == []
        assert len(await tips.get_recent_tips(limit=None)) == 2
        with pytest.raises(ValueError):
            await tips.get_recent_tips(limit=-1)

    @pytest.mark.asyncio
    async def test_event_stats_confirmed_only(self, tips):
        await tips.content.connect()
        await tips.store_history(
            "e1",
            [
                make_tip("t1", speaker_id="s1", amount=5.0, tipper="0x1", status=TipStatus.CONFIRMED),
                make_tip("t2", speaker_id="s2", amount=7.0, tipper="0x1", status=TipStatus.CONFIRMED),
                make_tip("t3", speaker_id="s1", amount=4.0, tipper="0x2", status=TipStatus.CONFIRMED),
                make_tip("t4", speaker_id="s3", amount=100.0, tipper="0x3", status=TipStatus.PENDING),
                make_tip("t5", speaker_id="s3", amount=50.0, tipper="0x4", status=TipStatus.FAILED),
            ],
        )

        stats = await tips.event_stats("e1")

        assert stats.total_tips == 3
        assert stats.total_amount == 16.0
        assert stats.unique_tippers == 2
        assert [(s.speaker_id, s.amount, s.tip_count) for s in stats.top_speakers] == [
            ("s1", 9.0, 2),
            ("s2", 7.0, 1),
        ]
        assert stats.top_speakers[0].speaker_name == "S1"

    @pytest.mark.asyncio
    async def test_event_stats_top_ten(self, tips):
        await tips.content.connect()
        await tips.store_history(
            "e1",
            [
                make_tip(f"t{i}", speaker_id=f"s{i}", amount=float(i), status=TipStatus.CONFIRMED)
                for i in range(12)
            ],
        )

        stats = await tips.event_stats("e1")

        assert len(stats.top_speakers) == 10
        assert stats.top_speakers[0].speaker_id == "s11"

    @pytest.mark.asyncio
    async def test_event_stats_unknown_event(self, tips):
        await tips.content.connect()
        stats = await tips.event_stats("nope")
        assert stats.total_tips == 0
        assert stats.top_speakers == []

    @pytest.mark.asyncio
    async def test_stats_total_tips(self, tips):
        await tips.content.connect()
        await tips.store_history("e1", [make_tip("a"), make_tip("b")])
        await tips.add_tip("e2", make_tip("c", event_id="e2"))

        stats = await tips.stats()

        assert stats.total == 2
        assert stats.total_tips == 3
