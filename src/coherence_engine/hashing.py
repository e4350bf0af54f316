"""Deterministic content fingerprints for graph nodes."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical import to_canonical_json


def hash_bytes(data: bytes | bytearray | memoryview) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(bytes(data)).hexdigest()


def hash_text(text: str) -> str:
    return hash_bytes(text.encode("utf-8"))


def hash_value(value: Any, *, version: str, salt: str | None = None) -> str:
    """Hash *value* together with a tool version and an optional salt.

    The payload ``{"value", "version", "salt"}`` is canonicalized first, so
    structurally equal mappings hash identically regardless of key order.
    Changing *version* or *salt* changes the digest even when *value* does not.
    """
    payload = {"value": value, "version": version, "salt": salt}
    return hash_text(to_canonical_json(payload))
