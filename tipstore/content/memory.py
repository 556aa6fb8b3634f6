"""
In-memory content backend for testing.

This module provides a content-addressed backend that keeps every blob in a
dict keyed by its CID. It is used for:
- Unit tests
- Integration tests
- Local development without a storage network

Invariants:
    - All data is lost on process exit
    - CIDs are derived from the bytes (CIDv1 raw sha256), so identical
      payloads share a CID
    - Blobs are never removed, matching the immutable network

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with ContentBackend protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Set

from .base import AllowanceCheck, BackendError
from .cid import compute_cid

logger = logging.getLogger(__name__)


class InMemoryContentBackend:
    """In-memory implementation of ContentBackend for testing.

    Attributes:
        latency: Seconds to sleep inside each upload/download, so tests can
            interleave concurrent writers

    Example:
        >>> backend = InMemoryContentBackend()
        >>> await backend.connect()
        >>> cid = await backend.upload(b"value1")
        >>> await backend.download(cid)
        b'value1'
    """

    def __init__(
        self,
        address: str = "0x0000000000000000000000000000000000000000",
        latency: float = 0.0,
    ) -> None:
        """Initialize in-memory backend.

        Args:
            address: Account address reported to the ContentStore
            latency: Artificial delay for every network call
        """
        self.latency = latency
        self._address = address
        self._blobs: Dict[str, bytes] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._unreachable = False
        self._failing_cids: Set[str] = set()
        self._allowance_bytes: Optional[int] = None
        self._upload_delays: List[float] = []
        self.upload_count = 0
        self.download_count = 0

    @property
    def address(self) -> str:
        return self._address

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        if self._unreachable:
            raise BackendError("Network unreachable")
        self._connected = True
        logger.debug("InMemoryContentBackend connected")

    async def close(self) -> None:
        """Close the backend; blobs survive so a reconnect sees them."""
        self._connected = False
        logger.debug("InMemoryContentBackend closed")

    async def upload(self, payload: bytes) -> str:
        """Store a blob under its content hash.

        Args:
            payload: Bytes to store

        Returns:
            CID of the payload
        """
        self._check_available()
        delay = self._upload_delays.pop(0) if self._upload_delays else self.latency
        if delay:
            await asyncio.sleep(delay)

        cid = compute_cid(payload)
        async with self._lock:
            self._blobs[cid] = payload
            self.upload_count += 1
            if self._allowance_bytes is not None:
                self._allowance_bytes -= len(payload)

        logger.debug("Blob stored in memory", extra={"cid": cid, "size": len(payload)})
        return cid

    async def download(self, cid: str) -> bytes:
        """Fetch a blob and verify it against its CID.

        Raises:
            BackendError: If unreachable, marked failing, missing, or corrupt
        """
        self._check_available()
        if self.latency:
            await asyncio.sleep(self.latency)
        if cid in self._failing_cids:
            raise BackendError(f"Injected retrieval failure for {cid}")

        self.download_count += 1
        payload = self._blobs.get(cid)
        if payload is None:
            raise BackendError(f"Blob not found: {cid}")
        if compute_cid(payload) != cid:
            raise BackendError(f"Content verification failed for {cid}")
        return payload

    async def check_allowance(self, size: int) -> AllowanceCheck:
        self._check_available()
        if self._allowance_bytes is not None and size > self._allowance_bytes:
            return AllowanceCheck(
                sufficient=False,
                reason=f"allowance covers {self._allowance_bytes} bytes",
            )
        return AllowanceCheck(sufficient=True)

    def _check_available(self) -> None:
        if self._unreachable:
            raise BackendError("Network unreachable")
        if not self._connected:
            raise BackendError("Not connected")

    # Testing helpers

    def set_unreachable(self, unreachable: bool = True) -> None:
        """Simulate a full network outage for every call."""
        self._unreachable = unreachable

    def fail_cid(self, cid: str) -> None:
        """Make downloads of one CID fail."""
        self._failing_cids.add(cid)

    def heal_cid(self, cid: str) -> None:
        """Undo fail_cid()."""
        self._failing_cids.discard(cid)

    def set_allowance(self, remaining_bytes: Optional[int]) -> None:
        """Limit the bytes the account can still pay for (None = unlimited)."""
        self._allowance_bytes = remaining_bytes

    def queue_upload_delays(self, *delays: float) -> None:
        """Delay the next uploads by the given seconds, in call order."""
        self._upload_delays.extend(delays)

    def corrupt(self, cid: str, payload: bytes) -> None:
        """Overwrite a blob with bytes that no longer match its CID."""
        self._blobs[cid] = payload

    def get_blob_count(self) -> int:
        """Number of distinct blobs held."""
        return len(self._blobs)

    def has_blob(self, cid: str) -> bool:
        return cid in self._blobs
