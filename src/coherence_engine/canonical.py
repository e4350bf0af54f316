from __future__ import annotations

import base64
from datetime import UTC, date, datetime, time
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any
from uuid import UUID

import rfc8785
from pydantic import BaseModel

# JSON-primitive types that rfc8785 can serialize directly.
_PASSTHROUGH_TYPES = (bool, float, str, type(None))

# rfc8785 rejects integers outside the IEEE-754 safe range.
_MAX_SAFE_INTEGER = 2**53 - 1


class _Missing:
    """Marker for an absent value; dropped from mappings during normalization."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

# Stands in for a container that contains itself.
CIRCULAR = "[Circular]"


def _normalize_key(key: Any) -> str:
    if isinstance(key, Enum):
        key = key.value
    return key if isinstance(key, str) else str(key)


def _normalize_mapping(value: dict[Any, Any], ancestors: frozenset[int]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for raw_key, item in value.items():
        if item is MISSING:
            continue
        key = _normalize_key(raw_key)
        if key in result:
            raise ValueError(f"Duplicate key {key!r} after converting mapping keys to strings")
        result[key] = normalize(item, ancestors)
    return result


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    utc = value.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def normalize(value: Any, _ancestors: frozenset[int] = frozenset()) -> Any:
    """Recursively convert Python/Pydantic values into JSON-primitive types.

    rfc8785.dumps only accepts: bool, int, float, str, None, list/tuple, dict.
    Mapping entries holding ``MISSING`` are dropped and ``None`` is kept as
    null. Enum keys use their value. A container nested inside itself is
    rendered as ``"[Circular]"``. Datetimes become UTC ISO-8601 with
    millisecond precision and integers outside the safe range become decimal
    strings.

    Args:
        value: Any Python value to normalize.

    Returns:
        A JSON-primitive structure suitable for rfc8785.dumps.

    Raises:
        TypeError: If value contains a type that cannot be converted to JSON.
        ValueError: If two mapping keys collide once converted to strings.
    """
    if isinstance(value, _PASSTHROUGH_TYPES):
        return value

    if isinstance(value, int):
        if abs(value) > _MAX_SAFE_INTEGER:
            return str(value)
        return value

    if isinstance(value, Enum):
        return normalize(value.value, _ancestors)

    if isinstance(value, BaseModel):
        return normalize(value.model_dump(mode="python", exclude_unset=True), _ancestors)

    if isinstance(value, (dict, list, tuple)):
        marker = id(value)
        if marker in _ancestors:
            return CIRCULAR
        nested = _ancestors | {marker}
        if isinstance(value, dict):
            return _normalize_mapping(value, nested)
        return [normalize(item, nested) for item in value]

    if isinstance(value, datetime):
        return _format_datetime(value)

    if isinstance(value, (date, time)):
        return value.isoformat()

    if isinstance(value, UUID):
        return str(value)

    if isinstance(value, PurePath):
        return value.as_posix()

    if isinstance(value, Decimal):
        if not value.is_finite():
            raise TypeError(f"Cannot serialize non-finite Decimal to JSON: {value!r}")
        return str(value)

    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"$bytes": base64.b64encode(bytes(value)).decode("ascii")}

    raise TypeError(
        f"Cannot serialize type {type(value).__name__} to canonical JSON. "
        f"Convert to a JSON-compatible type first."
    )


def to_canonical_json(value: Any) -> str:
    """Serialize a value to deterministic, byte-for-byte reproducible JSON per RFC 8785.

    Raises:
        TypeError: If value contains an unsupported type.
        ValueError: If two mapping keys collide once converted to strings.
        rfc8785.CanonicalizationError: If rfc8785 rejects the normalized value.
    """
    normalized = normalize(value)
    return rfc8785.dumps(normalized).decode("utf-8")
