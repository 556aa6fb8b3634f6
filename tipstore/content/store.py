"""
ContentStore: policy layer over a ContentBackend.

Enforces the write preconditions (size ceiling, allowance) and maps backend
failures onto the tipstore error taxonomy. Holds no index or cache state.

Invariants:
    - Payloads larger than max_payload_bytes never reach the backend
    - The allowance check runs before every upload
    - Read failures always surface as NotRetrievableError
"""

from __future__ import annotations

import logging
import time

from ..config import MAX_PAYLOAD_BYTES
from ..errors import (
    ContentWriteError,
    InsufficientAllowanceError,
    NotRetrievableError,
    PayloadTooLargeError,
)
from .base import BackendError, ContentBackend, StoredContent

logger = logging.getLogger(__name__)

DEFAULT_URL_TEMPLATE = "https://{address}.calibration.filcdn.io/{cid}"


class ContentStore:
    """Writes and reads opaque payloads on the content network.

    Example:
        >>> store = ContentStore(InMemoryContentBackend())
        >>> await store.connect()
        >>> result = await store.store(b'{"id": "e1"}')
        >>> await store.retrieve(result.cid)
        b'{"id": "e1"}'
    """

    def __init__(
        self,
        backend: ContentBackend,
        max_payload_bytes: int = MAX_PAYLOAD_BYTES,
        url_template: str = DEFAULT_URL_TEMPLATE,
    ) -> None:
        self.backend = backend
        self.max_payload_bytes = max_payload_bytes
        self.url_template = url_template

    @property
    def address(self) -> str:
        return self.backend.address

    @property
    def is_connected(self) -> bool:
        return self.backend.is_connected

    async def connect(self) -> None:
        await self.backend.connect()

    async def close(self) -> None:
        await self.backend.close()

    async def store(self, payload: bytes) -> StoredContent:
        """Write a payload.

        Args:
            payload: Serialized bytes

        Returns:
            StoredContent with the new CID

        Raises:
            PayloadTooLargeError: If payload exceeds the ceiling
            InsufficientAllowanceError: If the account cannot pay
            ContentWriteError: If the upload fails in transport
        """
        size = len(payload)
        if size > self.max_payload_bytes:
            raise PayloadTooLargeError(size, self.max_payload_bytes)

        try:
            allowance = await self.backend.check_allowance(size)
        except BackendError as e:
            raise ContentWriteError(f"Allowance check failed: {e}") from e
        if not allowance.sufficient:
            raise InsufficientAllowanceError(size, allowance.reason)

        try:
            cid = await self.backend.upload(payload)
        except BackendError as e:
            raise ContentWriteError(f"Upload failed: {e}") from e

        result = StoredContent(cid=cid, size=size, written_at=time.time())
        logger.debug("Payload stored", extra={"cid": cid, "size": size})
        return result

    async def retrieve(self, cid: str) -> bytes:
        """Read a payload by CID.

        Raises:
            NotRetrievableError: On any transport or verification failure
        """
        try:
            return await self.backend.download(cid)
        except BackendError as e:
            raise NotRetrievableError(cid, str(e)) from e

    def resolve_public_url(self, cid: str) -> str:
        """Public gateway URL for a CID; pure formatting, no network call."""
        return self.url_template.format(address=self.backend.address.lower(), cid=cid)
