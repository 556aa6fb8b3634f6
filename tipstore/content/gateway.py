"""
HTTP gateway content backend.

Talks to a server-side storage gateway that holds the signing key and
forwards writes and reads to the content network. The browser-facing
application never sees the key; this backend only speaks to the gateway.

Gateway API:
    POST {base_url}/preflight   {"size": n}        -> {"sufficient": bool, "reason": str?}
    POST {base_url}/store       raw bytes          -> {"cid": str}
    GET  {base_url}/retrieve/{cid}                 -> raw bytes

Invariants:
    - One pooled httpx.AsyncClient per backend, created in connect()
    - Every transport or protocol failure surfaces as BackendError
    - CIDs returned by the gateway are shape-checked before use
    - Downloads of raw sha256 CIDv1 content are verified against the CID

How to change safely:
    - Keep the gateway API backward compatible; old deployments stay live
    - Test against a real gateway before changing timeouts
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .base import AllowanceCheck, BackendError
from .cid import compute_cid, is_raw_sha256_cid, validate_cid

logger = logging.getLogger(__name__)


class GatewayContentBackend:
    """ContentBackend implementation over the storage gateway HTTP API.

    Example:
        >>> backend = GatewayContentBackend("https://app.example/api/filcdn", "0xabc")
        >>> await backend.connect()
        >>> cid = await backend.upload(b'{"id": "e1"}')
    """

    def __init__(
        self,
        base_url: str,
        address: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the gateway backend.

        Args:
            base_url: Gateway base URL
            address: Account address the gateway writes as
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._address = address
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )
        logger.info("Storage gateway client ready", extra={"base_url": self.base_url})

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.warning(f"Error closing gateway client: {e}")
            self._client = None

    async def upload(self, payload: bytes) -> str:
        response = await self._request(
            "POST",
            "/store",
            content=payload,
            headers={"Content-Type": "application/octet-stream"},
        )
        body = self._json(response)
        cid = body.get("cid")
        if not isinstance(cid, str) or not validate_cid(cid):
            raise BackendError(f"Gateway returned an invalid CID: {cid!r}")
        return cid

    async def download(self, cid: str) -> bytes:
        response = await self._request("GET", f"/retrieve/{cid}")
        payload = response.content
        if is_raw_sha256_cid(cid) and compute_cid(payload) != cid:
            raise BackendError(f"Content verification failed for {cid}")
        return payload

    async def check_allowance(self, size: int) -> AllowanceCheck:
        response = await self._request("POST", "/preflight", json={"size": size})
        body = self._json(response)
        return AllowanceCheck(
            sufficient=bool(body.get("sufficient", False)),
            reason=body.get("reason"),
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            raise BackendError("Not connected")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise BackendError(f"Gateway timeout on {method} {path}: {e}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"Gateway transport error on {method} {path}: {e}") from e

        if response.status_code >= 400:
            raise BackendError(
                f"Gateway returned {response.status_code} on {method} {path}: "
                f"{response.text[:200]}"
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise BackendError(f"Gateway returned non-JSON body: {e}") from e
        if not isinstance(body, dict):
            raise BackendError("Gateway returned a non-object JSON body")
        return body
