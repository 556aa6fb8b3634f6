"""In-memory LocalStore for tests and ephemeral runs. All data is lost on exit."""

from __future__ import annotations

from typing import Dict, List, Optional


class InMemoryLocalStore:
    """Dict-backed LocalStore.

    Example:
        >>> store = InMemoryLocalStore()
        >>> await store.set("k", "{}")
        >>> await store.get("k")
        '{}'
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    # Testing helpers

    def raw(self) -> Dict[str, str]:
        """Snapshot of every stored key/value."""
        return dict(self._data)

    def put_raw(self, key: str, value: str) -> None:
        """Write without going through the async API (e.g. corrupt entries)."""
        self._data[key] = value
