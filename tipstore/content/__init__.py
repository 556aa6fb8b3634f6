"""
Content-addressed network abstraction for tipstore.

This module provides a pluggable backend interface supporting:
- The storage gateway over HTTP (production)
- In-memory (for testing)

ContentStore sits on top of a backend and enforces the write
preconditions. Nothing here tracks which CID is current; that is the
job of tipstore.local.IndexStore.

Invariants:
    - Written content is immutable; a new write yields a new CID
    - Reads of the same CID return the same bytes
    - Payloads above 254 MiB are rejected before upload
"""

from .base import (
    AllowanceCheck,
    BackendError,
    ContentBackend,
    StoredContent,
    create_content_backend,
)
from .cid import compute_cid, is_raw_sha256_cid, validate_cid
from .gateway import GatewayContentBackend
from .memory import InMemoryContentBackend
from .store import ContentStore

__all__ = [
    # Protocol and types
    "ContentBackend",
    "StoredContent",
    "AllowanceCheck",
    "BackendError",
    # Factory
    "create_content_backend",
    # Implementations
    "GatewayContentBackend",
    "InMemoryContentBackend",
    # Policy layer
    "ContentStore",
    # CIDs
    "compute_cid",
    "is_raw_sha256_cid",
    "validate_cid",
]
