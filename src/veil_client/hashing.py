"""
Hashing utilities for veil-client.

blake3 is used for content addressing: deterministic fingerprints of
authorizations and derivation of 32-byte handle identifiers.
"""

from __future__ import annotations

import json
from typing import Any

from blake3 import blake3

HANDLE_BYTES = 32
ZERO_HANDLE = "0x" + "00" * HANDLE_BYTES


def stable_json_dumps(obj: Any) -> str:
    """Serialize with sorted keys and no whitespace so equal objects hash equally."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def content_hash(obj: Any) -> str:
    """
    Generate a deterministic content hash for any JSON-serializable object.

    Returns:
        64-character hexadecimal hash
    """
    return blake3(stable_json_dumps(obj).encode("utf-8")).hexdigest()


def derive_handle(*parts: Any) -> str:
    """
    Derive a 0x-prefixed 32-byte identifier from arbitrary parts.

    Never returns the all-zero handle.
    """
    digest = blake3(stable_json_dumps(list(parts)).encode("utf-8")).digest(length=HANDLE_BYTES)
    handle = "0x" + digest.hex()
    if handle == ZERO_HANDLE:
        handle = "0x" + "00" * (HANDLE_BYTES - 1) + "01"
    return handle


def is_zero_handle(value: str | None) -> bool:
    """True for the uninitialized handle (all zero bytes, any length)."""
    if not value:
        return True
    digits = value[2:] if value.lower().startswith("0x") else value
    return set(digits) <= {"0"}


__all__ = [
    "HANDLE_BYTES",
    "ZERO_HANDLE",
    "stable_json_dumps",
    "content_hash",
    "derive_handle",
    "is_zero_handle",
]
