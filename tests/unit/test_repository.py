"""
Unit tests for the generic content-addressed repository.

Tests cover:
- Store/retrieve round trip and cache hits
- Miss safety, stale fallback and total fallback
- Partial-failure isolation in list_all/get_many
- Update/delete semantics
- Concurrent writers (last write wins)
"""

import asyncio
import time

import pytest

from tipstore.content import ContentStore, InMemoryContentBackend
from tipstore.errors import (
    InsufficientAllowanceError,
    NotFoundError,
    PayloadTooLargeError,
)
from tipstore.local import CacheEntry, CacheStore, IndexStore, InMemoryLocalStore
from tipstore.models import Event, SpeakerProfile
from tipstore.repository import (
    create_event_repository,
    create_speaker_repository,
    speaker_matches,
)


class RepositoryFixtures:
    """Shared wiring: in-memory content backend and local store."""

    @pytest.fixture
    def backend(self):
        return InMemoryContentBackend()

    @pytest.fixture
    def local(self):
        return InMemoryLocalStore()

    @pytest.fixture
    def content(self, backend):
        return ContentStore(backend)

    @pytest.fixture
    def index(self, local):
        return IndexStore(local)

    @pytest.fixture
    def cache(self, local):
        return CacheStore(local)

    @pytest.fixture
    def events(self, content, index, cache):
        return create_event_repository(content, index, cache)

    @pytest.fixture
    def speakers(self, content, index, cache):
        return create_speaker_repository(content, index, cache)


class TestStoreRetrieve(RepositoryFixtures):
    """Round trip and read-path behaviour."""

    @pytest.mark.asyncio
    async def test_round_trip(self, events, content):
        """retrieve after store returns the stored value."""
        await content.connect()
        event = Event(id="e1", name="DevCon", start_time=1000, speaker_ids=["s1"])

        cid = await events.store(event)

        assert cid.startswith("b")
        assert await events.retrieve("e1") == event

    @pytest.mark.asyncio
    async def test_store_writes_index_then_cache(self, events, content, index, cache):
        await content.connect()
        cid = await events.store(Event(id="e1", name="DevCon"))

        entry = await index.get("event", "e1")
        assert entry.cid == cid
        assert entry.version == "1.0"
        assert entry.item_count is None
        cached = await cache.get("event", "e1")
        assert cached.value["name"] == "DevCon"
        assert cached.last_updated == entry.last_updated

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_network(self, events, content, backend):
        await content.connect()
        await events.store(Event(id="e1", name="DevCon"))

        await events.retrieve("e1")
        await events.retrieve("e1")

        assert backend.download_count == 0

    @pytest.mark.asyncio
    async def test_expired_cache_refetches_and_refreshes(self, events, content, backend, cache):
        await content.connect()
        await events.store(Event(id="e1", name="DevCon"))
        await cache.set("event", "e1", CacheEntry({"id": "e1", "name": "Old"}, last_updated=0.0))

        event = await events.retrieve("e1")

        assert event.name == "DevCon"
        assert backend.download_count == 1
        refreshed = await cache.get("event", "e1")
        assert refreshed.value["name"] == "DevCon"
        assert refreshed.is_valid(300)

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, events, content, backend):
        """Unknown ids return None without touching the network."""
        await content.connect()
        assert await events.retrieve("nope") is None
        assert backend.download_count == 0

    @pytest.mark.asyncio
    async def test_stale_fallback(self, events, content, backend, cache):
        """An expired cache entry is served when the network is down."""
        await content.connect()
        await events.store(Event(id="e1", name="DevCon"))
        entry = await cache.get("event", "e1")
        await cache.set("event", "e1", CacheEntry(entry.value, last_updated=time.time() - 301))
        backend.set_unreachable()

        event = await events.retrieve("e1")

        assert event is not None
        assert event.name == "DevCon"

    @pytest.mark.asyncio
    async def test_total_fallback(self, events, content, backend, cache):
        """No cache and no network gives None, not an exception."""
        await content.connect()
        cid = await events.store(Event(id="e1", name="DevCon"))
        await cache.remove("event", "e1")
        backend.fail_cid(cid)

        assert await events.retrieve("e1") is None

    @pytest.mark.asyncio
    async def test_corrupt_cache_then_refetch(self, events, content, local):
        await content.connect()
        await events.store(Event(id="e1", name="DevCon"))
        local.put_raw("tipstore_event_cache_e1", '{"value": {"id": 1}, "last_updated": 9e99}')

        event = await events.retrieve("e1")
        assert event.name == "DevCon"

    @pytest.mark.asyncio
    async def test_blob_of_wrong_kind_is_unreadable(self, events, speakers, content, index):
        """An index pointing at another kind's envelope reads as None."""
        await content.connect()
        speaker_cid = await speakers.store(SpeakerProfile(id="s1", name="Ada"))
        entry = await index.get("speaker", "s1")
        await index.set("event", "e1", entry)

        assert speaker_cid == entry.cid
        assert await events.retrieve("e1") is None


class TestWritePaths(RepositoryFixtures):
    """Write errors propagate; update/delete semantics."""

    @pytest.mark.asyncio
    async def test_write_errors_leave_state_untouched(self, events, content, backend, index, cache):
        await content.connect()
        backend.set_allowance(0)

        with pytest.raises(InsufficientAllowanceError):
            await events.store(Event(id="e1", name="DevCon"))

        assert await index.get("event", "e1") is None
        assert await cache.get("event", "e1") is None

    @pytest.mark.asyncio
    async def test_oversized_entity(self, index, cache):
        backend = InMemoryContentBackend()
        content = ContentStore(backend, max_payload_bytes=64)
        events = create_event_repository(content, index, cache)
        await content.connect()

        with pytest.raises(PayloadTooLargeError):
            await events.store(Event(id="e1", name="x" * 100))

    @pytest.mark.asyncio
    async def test_store_always_uploads(self, events, content, backend):
        await content.connect()
        event = Event(id="e1", name="DevCon")
        await events.store(event)
        await events.store(event)
        assert backend.upload_count == 2

    @pytest.mark.asyncio
    async def test_update_merges_and_moves_pointer(self, events, content, index):
        await content.connect()
        first = await events.store(Event(id="e1", name="DevCon", location="Bogota"))

        second = await events.update("e1", {"name": "DevCon 7", "id": "hijack"})

        assert second != first
        event = await events.retrieve("e1")
        assert event.id == "e1"
        assert event.name == "DevCon 7"
        assert event.location == "Bogota"
        assert (await index.get("event", "e1")).cid == second
        assert await events.retrieve("hijack") is None

    @pytest.mark.asyncio
    async def test_update_kwargs(self, events, content):
        await content.connect()
        await events.store(Event(id="e1", name="DevCon"))
        await events.update("e1", is_active=False)
        assert (await events.retrieve("e1")).is_active is False

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, events, content):
        await content.connect()
        with pytest.raises(NotFoundError) as exc_info:
            await events.update("nope", {"name": "x"})
        assert exc_info.value.resource_type == "event"
        assert exc_info.value.resource_id == "nope"

    @pytest.mark.asyncio
    async def test_delete_keeps_blob(self, events, content, backend):
        await content.connect()
        cid = await events.store(Event(id="e1", name="DevCon"))

        assert await events.delete("e1") is True
        assert await events.delete("e1") is False
        assert await events.retrieve("e1") is None
        assert backend.has_blob(cid)

    @pytest.mark.asyncio
    async def test_concurrent_writers_last_index_write_wins(self, events, content, backend, index):
        """The writer whose index update lands last defines the value."""
        await content.connect()
        await events.store(Event(id="e1", name="v0"))
        # First writer's upload is slower, so its index write lands last.
        backend.queue_upload_delays(0.05, 0.0)

        cid_a, cid_b = await asyncio.gather(
            events.update("e1", {"name": "from-a"}),
            events.update("e1", {"name": "from-b"}),
        )

        assert cid_a != cid_b
        assert (await index.get("event", "e1")).cid == cid_a
        await events.clear_cache()
        assert (await events.retrieve("e1")).name == "from-a"
        assert backend.has_blob(cid_b)


class TestListing(RepositoryFixtures):
    """list_all / get_many / search."""

    @pytest.mark.asyncio
    async def test_events_sorted_by_start_time(self, events, content):
        await content.connect()
        await events.store(Event(id="old", name="Old", start_time=1))
        await events.store(Event(id="new", name="New", start_time=3))
        await events.store(Event(id="mid", name="Mid", start_time=2))

        assert [e.id for e in await events.list_all()] == ["new", "mid", "old"]

    @pytest.mark.asyncio
    async def test_speakers_sorted_by_last_write(self, speakers, content):
        await content.connect()
        await speakers.store(SpeakerProfile(id="a", name="A"))
        await asyncio.sleep(0.01)
        await speakers.store(SpeakerProfile(id="b", name="B"))
        await asyncio.sleep(0.01)
        await speakers.update("a", {"title": "Keynote"})

        assert [s.id for s in await speakers.list_all()] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_partial_failure_isolation(self, events, content, backend):
        """One unreadable entity does not hide the others."""
        await content.connect()
        cids = {}
        for i in range(5):
            cids[f"e{i}"] = await events.store(Event(id=f"e{i}", name=f"E{i}", start_time=i))
        await events.clear_cache()
        backend.fail_cid(cids["e2"])

        listed = await events.list_all()

        assert [e.id for e in listed] == ["e4", "e3", "e1", "e0"]

    @pytest.mark.asyncio
    async def test_list_all_falls_back_to_cache(self, events, content, monkeypatch):
        await content.connect()
        await events.store(Event(id="e1", name="One", start_time=1))
        await events.store(Event(id="e2", name="Two", start_time=2))

        async def broken(kind):
            raise RuntimeError("local store offline")

        monkeypatch.setattr(events.index, "entries", broken)

        assert [e.id for e in await events.list_all()] == ["e2", "e1"]

    @pytest.mark.asyncio
    async def test_list_all_empty(self, events, content):
        await content.connect()
        assert await events.list_all() == []

    @pytest.mark.asyncio
    async def test_get_many_keeps_order_and_drops_misses(self, events, content):
        await content.connect()
        await events.store(Event(id="e1", name="One"))
        await events.store(Event(id="e2", name="Two"))

        found = await events.get_many(["e2", "missing", "e1"])

        assert [e.id for e in found] == ["e2", "e1"]

    @pytest.mark.asyncio
    async def test_search(self, speakers, content):
        await content.connect()
        await speakers.store(SpeakerProfile(id="s1", name="Ada Lovelace", title="Engineer"))
        await speakers.store(SpeakerProfile(id="s2", name="Grace", bio="COBOL pioneer"))

        found = await speakers.search(lambda s: speaker_matches(s, "cobol"))
        assert [s.id for s in found] == ["s2"]

    @pytest.mark.asyncio
    async def test_search_skips_failing_predicate(self, speakers, content):
        await content.connect()
        await speakers.store(SpeakerProfile(id="s1", name="Ada"))
        await speakers.store(SpeakerProfile(id="s2", name="Grace"))

        def predicate(speaker):
            if speaker.id == "s1":
                raise ValueError("boom")
            return True

        assert [s.id for s in await speakers.search(predicate)] == ["s2"]

    @pytest.mark.asyncio
    async def test_stats(self, events, content):
        await content.connect()
        await events.store(Event(id="e1", name="One"))
        await events.store(Event(id="e2", name="Two"))
        await events.cache.remove("event", "e2")

        stats = await events.stats()

        assert stats.total == 2
        assert stats.cached == 1
        assert stats.index_size > 0
        assert "total_tips" not in stats.to_dict()


class FailingCacheLocalStore(InMemoryLocalStore):
    """LocalStore whose cache-key writes fail once enabled."""

    def __init__(self):
        super().__init__()
        self.fail_cache_writes = False

    async def set(self, key, value):
        if self.fail_cache_writes and "_cache_" in key:
            raise OSError("disk full")
        await super().set(key, value)


class TestCacheWriteFailures(RepositoryFixtures):
    """Cache writes are best-effort on both read and write paths."""

    @pytest.fixture
    def local(self):
        return FailingCacheLocalStore()

    @pytest.mark.asyncio
    async def test_retrieve_returns_fetched_value(self, events, content, backend, local, cache):
        await content.connect()
        await events.store(Event(id="e1", name="DevCon"))
        await cache.remove("event", "e1")
        local.fail_cache_writes = True

        event = await events.retrieve("e1")

        assert event is not None
        assert event.name == "DevCon"
        assert backend.download_count == 1

    @pytest.mark.asyncio
    async def test_store_succeeds_and_moves_index(self, events, content, local, index):
        await content.connect()
        local.fail_cache_writes = True

        cid = await events.store(Event(id="e1", name="DevCon"))

        assert (await index.get("event", "e1")).cid == cid
        assert (await events.retrieve("e1")).name == "DevCon"

    @pytest.mark.asyncio
    async def test_update_succeeds(self, events, content, local):
        await content.connect()
        await events.store(Event(id="e1", name="DevCon"))
        await events.clear_cache()
        local.fail_cache_writes = True

        await events.update("e1", {"name": "DevCon 8"})

        assert (await events.retrieve("e1")).name == "DevCon 8"
