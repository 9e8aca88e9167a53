from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_json_bytes


SHORT_HASH_LEN = 12


def sha256_hex(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def compute_payload_hash(payload: Any) -> str:
    """
    payload_hash = sha256(UTF-8(canonical_json(payload))), plain hex.
    """
    return sha256_hex(canonical_json_bytes(payload))


def short_hash(digest: str) -> str:
    return digest[:SHORT_HASH_LEN]
