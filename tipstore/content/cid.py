"""Content identifier helpers.

CIDs minted here are CIDv1, raw codec, sha2-256 multihash, rendered as
lowercase base32 with the multibase ``b`` prefix (``bafkrei...``).

Validation stays lightweight: it accepts the common CIDv0 (base58btc,
``Qm`` + 44 chars) and CIDv1 base32 shapes and rejects anything else. It is
not a full multiformats parser.
"""

from __future__ import annotations

import base64
import hashlib
import re

_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")

# version 1, raw codec (0x55), sha2-256 (0x12), 32-byte digest
_CIDV1_RAW_SHA256_PREFIX = bytes([0x01, 0x55, 0x12, 0x20])
# base32 rendering of that prefix
_CIDV1_RAW_SHA256_MULTIBASE = "bafkrei"


def compute_cid(content: bytes) -> str:
    digest = hashlib.sha256(content).digest()
    encoded = base64.b32encode(_CIDV1_RAW_SHA256_PREFIX + digest).decode("ascii")
    return "b" + encoded.lower().rstrip("=")


def is_raw_sha256_cid(cid: str) -> bool:
    """True for CIDv1 raw sha256 strings, the only kind compute_cid() can verify."""
    return cid.startswith(_CIDV1_RAW_SHA256_MULTIBASE) and validate_cid(cid)


def validate_cid(cid: str, *, max_len: int = 128) -> bool:
    c = (cid or "").strip()
    if not c or len(c) > max_len:
        return False
    return bool(_CIDV0_RE.match(c) or _CIDV1_BASE32_RE.match(c))
