"""
Error types for tipstore.

This module defines every exception raised by the storage layer:
- TipStoreError: Base exception
- PayloadTooLargeError / InsufficientAllowanceError: write refused before upload
- ContentWriteError: upload failed in transport
- NotRetrievableError: remote read failure
- NotFoundError: entity missing on an operation that requires it
- ParseError: corrupted local entry or envelope
- InitializationFailedError: orchestrator could not start

Invariants:
    - All errors inherit from TipStoreError
    - Errors include context for debugging
    - Read paths catch these; write paths let them propagate
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TipStoreError(Exception):
    """Base exception for all tipstore errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TIPSTORE_ERROR"
        self.details = details or {}


class ContentStoreError(TipStoreError):
    """Base class for content network failures."""

    pass


class PayloadTooLargeError(ContentStoreError):
    """Serialized payload exceeds the network's size ceiling."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Payload size ({size} bytes) exceeds limit ({limit} bytes)",
            code="PAYLOAD_TOO_LARGE",
            details={"size": size, "limit": limit},
        )
        self.size = size
        self.limit = limit


class InsufficientAllowanceError(ContentStoreError):
    """Account cannot pay for the write.

    Raised when the pre-write allowance check reports the balance or
    allowance is too low for the payload size.
    """

    def __init__(self, size: int, reason: Optional[str] = None) -> None:
        msg = f"Insufficient allowance to store {size} bytes"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            code="INSUFFICIENT_ALLOWANCE",
            details={"size": size, "reason": reason},
        )
        self.size = size
        self.reason = reason


class ContentWriteError(ContentStoreError):
    """Upload to the content network failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONTENT_WRITE_FAILED")


class NotRetrievableError(ContentStoreError):
    """Content could not be fetched or verified."""

    def __init__(self, cid: str, reason: str) -> None:
        super().__init__(
            f"Content {cid} not retrievable: {reason}",
            code="NOT_RETRIEVABLE",
            details={"cid": cid, "reason": reason},
        )
        self.cid = cid
        self.reason = reason


class NotFoundError(TipStoreError):
    """Entity not found.

    Raised when:
    - update() targets an id with no index entry or retrievable value
    - update_tip_status() targets a tip id absent from the history
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ParseError(TipStoreError):
    """Stored JSON could not be decoded or failed schema validation."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message, code="PARSE_ERROR", details={"key": key})
        self.key = key


class InitializationFailedError(TipStoreError):
    """Orchestrator initialization failed; a later call may retry."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INITIALIZATION_FAILED")


class ConfigurationError(TipStoreError):
    """Inconsistent configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR")
