"""
IndexStore: current CID per logical entity id.

One JSON object per entity kind, stored under ``<prefix>_<kind>_index`` and
mapping id -> {cid, last_updated, version[, item_count]}. This is the only
place that records which write is current for an entity.

Invariants:
    - An entry's cid points at the most recent known write for that id
    - No history is kept; superseded CIDs are simply forgotten
    - A corrupt index blob reads as an empty table (logged ParseError)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import ParseError
from .base import LocalStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexEntry:
    """Index record for one entity.

    Attributes:
        cid: CID of the latest write
        last_updated: Unix timestamp (seconds) of that write
        version: Envelope schema version used for that write
        item_count: Optional element count (tip histories)
    """

    cid: str
    last_updated: float
    version: str
    item_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "cid": self.cid,
            "last_updated": self.last_updated,
            "version": self.version,
        }
        if self.item_count is not None:
            data["item_count"] = self.item_count
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> IndexEntry:
        return cls(
            cid=str(data["cid"]),
            last_updated=float(data["last_updated"]),
            version=str(data["version"]),
            item_count=data.get("item_count"),
        )


class IndexStore:
    """Typed view of the per-kind index tables.

    Example:
        >>> index = IndexStore(InMemoryLocalStore())
        >>> await index.set("event", "e1", IndexEntry("bafk...", 1.7e9, "1.0"))
        >>> await index.list_ids("event")
        ['e1']
    """

    def __init__(self, store: LocalStore, prefix: str = "tipstore") -> None:
        self.store = store
        self.prefix = prefix

    def key_for(self, kind: str) -> str:
        return f"{self.prefix}_{kind}_index"

    async def get(self, kind: str, entity_id: str) -> Optional[IndexEntry]:
        return (await self.entries(kind)).get(entity_id)

    async def set(self, kind: str, entity_id: str, entry: IndexEntry) -> None:
        entries = await self.entries(kind)
        entries[entity_id] = entry
        await self._write(kind, entries)

    async def remove(self, kind: str, entity_id: str) -> bool:
        entries = await self.entries(kind)
        if entries.pop(entity_id, None) is None:
            return False
        await self._write(kind, entries)
        return True

    async def list_ids(self, kind: str) -> List[str]:
        return list((await self.entries(kind)).keys())

    async def entries(self, kind: str) -> Dict[str, IndexEntry]:
        """All entries for a kind; empty if missing or corrupt."""
        key = self.key_for(kind)
        raw = await self.store.get(key)
        if raw is None:
            return {}
        try:
            return self._decode(key, raw)
        except ParseError as e:
            logger.error(
                "Failed to parse index, treating as empty",
                extra={"key": key, "error": e.message},
            )
            return {}

    async def raw_size(self, kind: str) -> int:
        """Serialized byte size of the index table."""
        raw = await self.store.get(self.key_for(kind))
        return len(raw.encode("utf-8")) if raw else 0

    async def _write(self, kind: str, entries: Dict[str, IndexEntry]) -> None:
        payload = {entity_id: entry.to_dict() for entity_id, entry in entries.items()}
        await self.store.set(self.key_for(kind), json.dumps(payload, separators=(",", ":")))

    @staticmethod
    def _decode(key: str, raw: str) -> Dict[str, IndexEntry]:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("index is not a JSON object")
            return {entity_id: IndexEntry.from_dict(entry) for entity_id, entry in data.items()}
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(f"Corrupt index {key}: {e}", key=key) from e
