"""
Persisted record layout.

A token is stored as a Redis hash at ``<prefix><value>``. Fields whose name
starts with :data:`RESERVED_PREFIX` belong to the engine; every other field is
caller payload. The record's store-native expiry decides whether the token
still exists.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Final

from tokenvault.services._shared.errors import (
    InvalidTokenError,
    ReservedFieldError,
    ValidationError,
)

RESERVED_PREFIX: Final[str] = "_"

CREATED_AT: Final[str] = "_created_at"
EXPIRES_AT: Final[str] = "_expires_at"
TTL: Final[str] = "_ttl"
REFRESHED_AT: Final[str] = "_refreshed_at"
REFRESH_COUNT: Final[str] = "_refresh_count"
REFRESH_LIMIT: Final[str] = "_refresh_limit"
IP: Final[str] = "_ip"
FINGERPRINT: Final[str] = "_fingerprint"
CHILD_TOKEN: Final[str] = "_child_token"
ACCESS_TOKEN: Final[str] = "_access_token"
USE_COUNT: Final[str] = "_use_count"
USED_AT: Final[str] = "_used_at"

RESERVED_FIELDS: Final[frozenset[str]] = frozenset(
    {
        CREATED_AT,
        EXPIRES_AT,
        TTL,
        REFRESHED_AT,
        REFRESH_COUNT,
        REFRESH_LIMIT,
        IP,
        FINGERPRINT,
        CHILD_TOKEN,
        ACCESS_TOKEN,
        USE_COUNT,
        USED_AT,
    }
)

Record = dict[str, str]


def is_reserved(name: str) -> bool:
    """Return ``True`` if ``name`` is owned by the engine."""
    return name.startswith(RESERVED_PREFIX)


def text(raw: Any) -> str:
    """Decode a value returned by redis-py (``bytes`` or ``str``)."""
    if isinstance(raw, bytes | bytearray):
        return raw.decode("utf-8")
    return str(raw)


def decode_record(raw: Mapping[Any, Any] | None) -> Record:
    """Normalize an ``HGETALL`` reply into ``dict[str, str]``."""
    if not raw:
        return {}
    return {text(k): text(v) for k, v in raw.items()}


def encode_value(value: Any) -> str:
    """
    Encode a payload value for storage.

    :param value: Caller value.
    :returns: String stored in the hash field.
    :raises ValidationError: If the value cannot be represented.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bytes | bytearray):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("payload bytes must be UTF-8") from exc
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int | float):
        return str(value)
    if value is None:
        return ""
    try:
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"unsupported payload value type: {type(value).__name__}") from exc


def check_field_name(name: Any) -> str:
    """
    Validate a caller-supplied field name.

    :raises ValidationError: If the name is empty or not a string.
    :raises ReservedFieldError: If the name is reserved.
    """
    if not isinstance(name, str) or not name:
        raise ValidationError("payload field names must be non-empty strings")
    if is_reserved(name):
        raise ReservedFieldError(name)
    return name


def encode_payload(payload: Mapping[str, Any] | None) -> Record:
    """Validate field names and encode every payload value."""
    if not payload:
        return {}
    return {check_field_name(k): encode_value(v) for k, v in payload.items()}


def split_record(record: Mapping[str, str]) -> tuple[Record, Record]:
    """Split a decoded record into ``(metadata, payload)``."""
    meta: Record = {}
    payload: Record = {}
    for k, v in record.items():
        (meta if is_reserved(k) else payload)[k] = v
    return meta, payload


def payload_of(record: Mapping[str, str]) -> Record:
    """Return only the caller payload of a decoded record."""
    return split_record(record)[1]


def int_field(record: Mapping[str, str], name: str, default: int | None = None) -> int:
    """
    Read a reserved integer field.

    A missing or undecodable field makes the whole record invalid.

    :raises InvalidTokenError: If the field is absent (and no default) or not an integer.
    """
    raw = record.get(name)
    if raw is None or raw == "":
        if default is not None:
            return default
        raise InvalidTokenError()
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidTokenError() from exc


__all__ = [
    "RESERVED_PREFIX",
    "RESERVED_FIELDS",
    "CREATED_AT",
    "EXPIRES_AT",
    "TTL",
    "REFRESHED_AT",
    "REFRESH_COUNT",
    "REFRESH_LIMIT",
    "IP",
    "FINGERPRINT",
    "CHILD_TOKEN",
    "ACCESS_TOKEN",
    "USE_COUNT",
    "USED_AT",
    "Record",
    "is_reserved",
    "text",
    "decode_record",
    "encode_value",
    "check_field_name",
    "encode_payload",
    "split_record",
    "payload_of",
    "int_field",
]
