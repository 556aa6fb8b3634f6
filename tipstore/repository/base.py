"""
Generic content-addressed repository.

One ContentAddressedRepository is instantiated per entity kind and composes
the ContentStore (blobs), IndexStore (current CID per id) and CacheStore
(last materialized value).

Read order for retrieve(id):
    1. Fresh cache entry                -> return it, no network call
    2. No index entry                   -> None
    3. Content store read + decode      -> refresh cache, return value
    4. Any failure in 3                 -> stale cache entry if present
                                           (warning), otherwise None

Invariants:
    - Read paths (retrieve, get_many, list_all, search) never raise
    - Write paths (store, update, delete) propagate every content and index
      error; cache writes are best-effort and only logged
    - store() always uploads, even if the entity is unchanged
    - delete() never touches the immutable blob
    - Concurrent writers to one id are last-write-wins at IndexStore.set

How to change safely:
    - Keep the index write before the cache write in store(); a crash in
      between leaves the cache behind the index, which heals after the TTL
    - New entity kinds only need a new EntityKind
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

from pydantic import BaseModel

from ..content import ContentStore
from ..errors import NotFoundError, ParseError
from ..local import CacheEntry, CacheStore, IndexEntry, IndexStore
from ..models import SCHEMA_VERSION, decode_envelope, decode_model, encode_entity

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class EntityKind(Generic[T]):
    """Everything a repository needs to know about one entity kind.

    Attributes:
        name: Namespace used in local keys and envelopes ("event", "speaker", "tip")
        model: Pydantic model for the entity
        ttl_seconds: How long a cache entry counts as fresh
        sort_key: Ordering for list_all(); None sorts by index write time
        newest_first: Sort descending
        id_field: Name of the entity's id field
    """

    name: str
    model: Type[T]
    ttl_seconds: float
    sort_key: Optional[Callable[[T], Any]] = None
    newest_first: bool = True
    id_field: str = "id"


@dataclass
class RepositoryStats:
    """Counts for one repository.

    Attributes:
        total: Ids tracked in the index
        cached: Ids with a cache entry
        index_size: Serialized index size in bytes
        total_tips: Sum of item counts (tip histories only)
    """

    total: int = 0
    cached: int = 0
    index_size: int = 0
    total_tips: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total": self.total,
            "cached": self.cached,
            "index_size": self.index_size,
        }
        if self.total_tips is not None:
            data["total_tips"] = self.total_tips
        return data


class ContentAddressedRepository(Generic[T]):
    """Store/retrieve/update/delete/list for one entity kind.

    Example:
        >>> repo = ContentAddressedRepository(event_kind(), content, index, cache)
        >>> cid = await repo.store(Event(id="e1", name="DevCon"))
        >>> await repo.retrieve("e1")
        Event(id='e1', name='DevCon', ...)
    """

    def __init__(
        self,
        kind: EntityKind[T],
        content: ContentStore,
        index: IndexStore,
        cache: CacheStore,
    ) -> None:
        self.kind = kind
        self.content = content
        self.index = index
        self.cache = cache

    @property
    def name(self) -> str:
        return self.kind.name

    def entity_id(self, entity: T) -> str:
        return getattr(entity, self.kind.id_field)

    def _item_count(self, entity: T) -> Optional[int]:
        """Element count recorded in the index entry; None for scalar entities."""
        return None

    # Write paths

    async def store(self, entity: T) -> str:
        """Write a new version of an entity and make it current.

        Returns:
            The new CID

        Raises:
            PayloadTooLargeError, InsufficientAllowanceError, ContentWriteError:
                From the content store; index and cache are untouched
        """
        entity_id = self.entity_id(entity)
        payload = encode_entity(self.kind.name, entity)
        result = await self.content.store(payload)

        entry = IndexEntry(
            cid=result.cid,
            last_updated=result.written_at,
            version=SCHEMA_VERSION,
            item_count=self._item_count(entity),
        )
        await self.index.set(self.kind.name, entity_id, entry)
        await self._cache_quietly(entity_id, entity, result.written_at)

        logger.info(
            f"Stored {self.kind.name}",
            extra={"kind": self.kind.name, "entity_id": entity_id, "cid": result.cid, "size": result.size},
        )
        return result.cid

    async def update(
        self,
        entity_id: str,
        fields: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> str:
        """Shallow-merge fields over the current value and store the result.

        Args:
            entity_id: Entity to update
            fields: Field values to overwrite (or use kwargs)

        Returns:
            The new CID

        Raises:
            NotFoundError: If the entity cannot be retrieved
            pydantic.ValidationError: If the merged value is invalid
        """
        existing = await self.retrieve(entity_id)
        if existing is None:
            raise NotFoundError(
                f"{self.kind.name} {entity_id} not found",
                resource_type=self.kind.name,
                resource_id=entity_id,
            )

        merged = existing.model_dump()
        merged.update(fields or {})
        merged.update(kwargs)
        merged[self.kind.id_field] = entity_id
        return await self.store(self.kind.model.model_validate(merged))

    async def delete(self, entity_id: str) -> bool:
        """Forget an entity locally. The blob stays on the network.

        Returns:
            True if an index entry existed
        """
        await self.cache.remove(self.kind.name, entity_id)
        existed = await self.index.remove(self.kind.name, entity_id)
        logger.info(
            f"Removed {self.kind.name} from index",
            extra={"kind": self.kind.name, "entity_id": entity_id, "existed": existed},
        )
        return existed

    async def clear_cache(self) -> int:
        return await self.cache.clear(self.kind.name)

    # Read paths

    async def retrieve(self, entity_id: str) -> Optional[T]:
        """Current value of an entity, or None. Never raises."""
        cached: Optional[Tuple[T, CacheEntry]] = None
        try:
            cached = await self._read_cache(entity_id)
            if cached is not None and cached[1].is_valid(self.kind.ttl_seconds):
                logger.debug(
                    f"Using cached {self.kind.name}",
                    extra={"kind": self.kind.name, "entity_id": entity_id},
                )
                return cached[0]

            entry = await self.index.get(self.kind.name, entity_id)
            if entry is None:
                logger.debug(
                    f"{self.kind.name} not in index",
                    extra={"kind": self.kind.name, "entity_id": entity_id},
                )
                return None

            payload = await self.content.retrieve(entry.cid)
            entity = self._decode(payload)
            await self._cache_quietly(entity_id, entity, time.time())
            return entity

        except Exception as e:
            if cached is not None:
                logger.warning(
                    f"Using stale cached {self.kind.name}",
                    extra={"kind": self.kind.name, "entity_id": entity_id, "error": str(e)},
                )
                return cached[0]
            logger.error(
                f"Failed to retrieve {self.kind.name}",
                extra={"kind": self.kind.name, "entity_id": entity_id, "error": str(e)},
            )
            return None

    async def get_many(self, entity_ids: Iterable[str]) -> List[T]:
        """Retrieve several ids concurrently; misses and failures are dropped.

        Result order follows entity_ids.
        """
        ids = list(entity_ids)
        results = await asyncio.gather(
            *(self.retrieve(entity_id) for entity_id in ids), return_exceptions=True
        )
        found: List[T] = []
        for entity_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to load {self.kind.name} {entity_id}: {result}")
            elif result is not None:
                found.append(result)
        logger.debug(f"Retrieved {len(found)}/{len(ids)} {self.kind.name} entities")
        return found

    async def list_all(self) -> List[T]:
        """Every indexed entity that could be materialized, in recency order.

        Falls back to every cached value if the index cannot be read.
        """
        try:
            entries = await self.index.entries(self.kind.name)
        except Exception as e:
            logger.error(f"Failed to read {self.kind.name} index: {e}")
            return await self._all_cached()

        ids = list(entries)
        results = await asyncio.gather(
            *(self.retrieve(entity_id) for entity_id in ids), return_exceptions=True
        )
        pairs: List[Tuple[T, float]] = []
        for entity_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to load {self.kind.name} {entity_id}: {result}")
            elif result is not None:
                pairs.append((result, entries[entity_id].last_updated))
        return self._sort(pairs)

    async def search(self, predicate: Callable[[T], bool]) -> List[T]:
        """In-memory filter over list_all(). Never raises."""
        matches: List[T] = []
        for entity in await self.list_all():
            try:
                if predicate(entity):
                    matches.append(entity)
            except Exception as e:
                logger.warning(
                    f"Search predicate failed on {self.kind.name} {self.entity_id(entity)}: {e}"
                )
        return matches

    async def stats(self) -> RepositoryStats:
        entries = await self.index.entries(self.kind.name)
        return RepositoryStats(
            total=len(entries),
            cached=len(await self.cache.ids(self.kind.name)),
            index_size=await self.index.raw_size(self.kind.name),
        )

    # Helpers

    async def _cache_quietly(self, entity_id: str, entity: T, last_updated: float) -> None:
        """Refresh the cache entry; failures are logged, never raised."""
        try:
            await self.cache.set(
                self.kind.name,
                entity_id,
                CacheEntry(value=entity.model_dump(mode="json"), last_updated=last_updated),
            )
        except Exception as e:
            logger.warning(
                f"Failed to cache {self.kind.name}",
                extra={"kind": self.kind.name, "entity_id": entity_id, "error": str(e)},
            )

    def _decode(self, payload: bytes) -> T:
        envelope = decode_envelope(payload, self.kind.name)
        return decode_model(self.kind.model, envelope.data)

    async def _read_cache(self, entity_id: str) -> Optional[Tuple[T, CacheEntry]]:
        entry = await self.cache.get(self.kind.name, entity_id)
        if entry is None:
            return None
        try:
            return decode_model(self.kind.model, entry.value, source=entity_id), entry
        except ParseError as e:
            logger.error(
                "Cached value failed validation, treating as miss",
                extra={"kind": self.kind.name, "entity_id": entity_id, "error": e.message},
            )
            return None

    async def _all_cached(self) -> List[T]:
        pairs: List[Tuple[T, float]] = []
        try:
            for entity_id in await self.cache.ids(self.kind.name):
                cached = await self._read_cache(entity_id)
                if cached is not None:
                    pairs.append((cached[0], cached[1].last_updated))
        except Exception as e:
            logger.error(f"Failed to read cached {self.kind.name} entities: {e}")
            return []
        if pairs:
            logger.warning(f"Using {len(pairs)} cached {self.kind.name} entities")
        return self._sort(pairs)

    def _sort(self, pairs: List[Tuple[T, float]]) -> List[T]:
        sort_key = self.kind.sort_key
        if sort_key is None:
            pairs.sort(key=lambda pair: pair[1], reverse=self.kind.newest_first)
        else:
            pairs.sort(key=lambda pair: sort_key(pair[0]), reverse=self.kind.newest_first)
        return [entity for entity, _ in pairs]
