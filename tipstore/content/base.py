"""
Base protocol and types for the content network abstraction.

This module defines the ContentBackend protocol that every network adapter
implements, along with the result types shared by the ContentStore.

Invariants:
    - upload() returns only after the network acknowledged the write
    - download(cid) is referentially transparent: same CID, same bytes
    - There is no update-in-place and no delete primitive

How to change safely:
    - Protocol changes require updating all implementations
    - Keep backends free of index/cache state; that lives in tipstore.local
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable, TYPE_CHECKING
import logging

if TYPE_CHECKING:
    from ..config import StorageConfig

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Transport-level failure raised by a backend."""

    pass


@dataclass(frozen=True)
class StoredContent:
    """Result of a successful write.

    Attributes:
        cid: Content identifier assigned by the network
        size: Payload size in bytes
        written_at: Unix timestamp (seconds) when the write completed
    """

    cid: str
    size: int
    written_at: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"cid": self.cid, "size": self.size, "written_at": self.written_at}


@dataclass(frozen=True)
class AllowanceCheck:
    """Outcome of the pre-write balance/allowance check.

    Attributes:
        sufficient: Whether the account can pay for the write
        reason: Optional explanation when insufficient
    """

    sufficient: bool
    reason: Optional[str] = None


@runtime_checkable
class ContentBackend(Protocol):
    """Protocol for content-addressed network backends.

    Example:
        >>> backend = InMemoryContentBackend()
        >>> await backend.connect()
        >>> cid = await backend.upload(b'{"hello": "world"}')
        >>> data = await backend.download(cid)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the network.

        Raises:
            BackendError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def upload(self, payload: bytes) -> str:
        """Write a payload and return its CID.

        Raises:
            BackendError: On transport failure
        """
        ...

    @abstractmethod
    async def download(self, cid: str) -> bytes:
        """Read the payload for a CID.

        Raises:
            BackendError: On transport or verification failure
        """
        ...

    @abstractmethod
    async def check_allowance(self, size: int) -> AllowanceCheck:
        """Check whether the account can pay for ``size`` bytes."""
        ...

    @property
    @abstractmethod
    def address(self) -> str:
        """Account address the backend writes as."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the network."""
        ...


def create_content_backend(config: "StorageConfig") -> ContentBackend:
    """Factory function to create a content backend from configuration.

    Args:
        config: Storage configuration

    Returns:
        Appropriate ContentBackend implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import ContentBackendKind
    from .gateway import GatewayContentBackend
    from .memory import InMemoryContentBackend

    if config.content_backend == ContentBackendKind.GATEWAY:
        return GatewayContentBackend(
            base_url=config.gateway_url,
            address=config.client_address,
            timeout=config.request_timeout,
        )
    elif config.content_backend == ContentBackendKind.MEMORY:
        return InMemoryContentBackend(address=config.client_address)
    else:
        raise ValueError(f"Unsupported content backend: {config.content_backend}")
