"""
CacheStore: last materialized value per entity.

Entries live under ``<prefix>_<kind>_cache_<id>`` as JSON
``{"value": ..., "last_updated": ...}``. The cache is advisory: callers
must check is_valid() before trusting an entry as fresh, but may serve a
stale entry when the content network is unreachable.

Invariants:
    - clear(kind) touches only keys in that kind's namespace
    - A corrupt entry reads as a miss (logged ParseError)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import ParseError
from .base import LocalStore

logger = logging.getLogger(__name__)


def is_valid(last_updated: float, ttl: float, now: Optional[float] = None) -> bool:
    """True iff ``now - last_updated < ttl`` (all in seconds)."""
    if now is None:
        now = time.time()
    return now - last_updated < ttl


@dataclass(frozen=True)
class CacheEntry:
    """Cached value for one entity.

    Attributes:
        value: JSON-compatible entity fields
        last_updated: Unix timestamp (seconds) the entry was written
    """

    value: Dict[str, Any]
    last_updated: float

    def is_valid(self, ttl: float, now: Optional[float] = None) -> bool:
        return is_valid(self.last_updated, ttl, now)


class CacheStore:
    """Typed view of the per-kind cache namespaces."""

    def __init__(self, store: LocalStore, prefix: str = "tipstore") -> None:
        self.store = store
        self.prefix = prefix

    def namespace(self, kind: str) -> str:
        return f"{self.prefix}_{kind}_cache_"

    def key_for(self, kind: str, entity_id: str) -> str:
        return self.namespace(kind) + entity_id

    async def get(self, kind: str, entity_id: str) -> Optional[CacheEntry]:
        key = self.key_for(kind, entity_id)
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return self._decode(key, raw)
        except ParseError as e:
            logger.error(
                "Failed to parse cache entry, treating as miss",
                extra={"key": key, "error": e.message},
            )
            return None

    async def set(self, kind: str, entity_id: str, entry: CacheEntry) -> None:
        payload = {"value": entry.value, "last_updated": entry.last_updated}
        await self.store.set(
            self.key_for(kind, entity_id), json.dumps(payload, separators=(",", ":"))
        )

    async def remove(self, kind: str, entity_id: str) -> bool:
        return await self.store.remove(self.key_for(kind, entity_id))

    async def ids(self, kind: str) -> List[str]:
        namespace = self.namespace(kind)
        return [key[len(namespace):] for key in await self.store.keys(namespace)]

    async def clear(self, kind: str) -> int:
        """Remove every cache entry of one kind. Returns the count removed."""
        keys = await self.store.keys(self.namespace(kind))
        for key in keys:
            await self.store.remove(key)
        logger.info(f"Cleared {len(keys)} cached {kind} entries")
        return len(keys)

    @staticmethod
    def _decode(key: str, raw: str) -> CacheEntry:
        try:
            data = json.loads(raw)
            value = data["value"]
            if not isinstance(value, dict):
                raise ValueError("cached value is not a JSON object")
            return CacheEntry(value=value, last_updated=float(data["last_updated"]))
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(f"Corrupt cache entry {key}: {e}", key=key) from e
