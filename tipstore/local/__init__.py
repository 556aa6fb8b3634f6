"""
Process-local durable state for tipstore.

- IndexStore: entity id -> current CID
- CacheStore: entity id -> last materialized value
- LocalStore backends: SQLite (durable) and in-memory (tests)

Invariants:
    - Keys are namespaced per entity kind and per purpose
      (``<prefix>_<kind>_index``, ``<prefix>_<kind>_cache_<id>``)
    - No multi-key transactions; callers tolerate a crash between an
      index write and a cache write
"""

from .base import LocalStore, create_local_store
from .cache import CacheEntry, CacheStore, is_valid
from .index import IndexEntry, IndexStore
from .memory import InMemoryLocalStore
from .sqlite import SqliteLocalStore

__all__ = [
    "LocalStore",
    "create_local_store",
    "InMemoryLocalStore",
    "SqliteLocalStore",
    "IndexEntry",
    "IndexStore",
    "CacheEntry",
    "CacheStore",
    "is_valid",
]
