"""
Local durable key-value storage protocol.

IndexStore and CacheStore are thin typed views over a LocalStore: a
string-keyed table of JSON text, logically partitioned by key prefix.

Invariants:
    - Keys are plain strings; namespacing is done by the caller's prefix
    - No multi-key transactions; each set/remove is independently durable
    - Values are JSON text; decoding is the caller's responsibility
"""

from __future__ import annotations

from abc import abstractmethod
from typing import List, Optional, Protocol, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import StorageConfig


@runtime_checkable
class LocalStore(Protocol):
    """Protocol for the process-local durable key-value table."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Value for key, or None."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Write value for key, replacing any previous value."""
        ...

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> List[str]:
        """All keys starting with prefix, sorted."""
        ...


def create_local_store(config: "StorageConfig") -> LocalStore:
    """Factory function to create a local store from configuration.

    Raises:
        ValueError: If the store kind is not supported
    """
    from ..config import LocalStoreKind
    from .memory import InMemoryLocalStore
    from .sqlite import SqliteLocalStore

    if config.local_store == LocalStoreKind.SQLITE:
        return SqliteLocalStore(config.sqlite_path, busy_timeout_ms=config.sqlite_busy_timeout_ms)
    elif config.local_store == LocalStoreKind.MEMORY:
        return InMemoryLocalStore()
    else:
        raise ValueError(f"Unsupported local store: {config.local_store}")
