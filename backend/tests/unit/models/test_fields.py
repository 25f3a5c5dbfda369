"""Unit tests for the persisted record layout helpers."""

from __future__ import annotations

import pytest

from tokenvault.models import fields
from tokenvault.services._shared.errors import (
    InvalidTokenError,
    ReservedFieldError,
    ValidationError,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("plain", "plain"),
        (b"bytes", "bytes"),
        (True, "1"),
        (False, "0"),
        (42, "42"),
        (1.5, "1.5"),
        (None, ""),
        ({"b": 1, "a": [1, 2]}, '{"a":[1,2],"b":1}'),
        ([1, "x"], '[1,"x"]'),
    ],
)
def test_encode_value(value, expected):
    assert fields.encode_value(value) == expected


def test_encode_value_rejects_unserializable():
    with pytest.raises(ValidationError):
        fields.encode_value(object())


def test_encode_value_rejects_non_utf8_bytes():
    with pytest.raises(ValidationError, match="UTF-8"):
        fields.encode_value(b"\xff\xfe")


def test_encode_payload_rejects_reserved_names():
    with pytest.raises(ReservedFieldError) as exc:
        fields.encode_payload({"ok": "1", "_created_at": "0"})
    assert exc.value.field == "_created_at"


@pytest.mark.parametrize("name", ["", None, 3])
def test_check_field_name_rejects_non_strings(name):
    with pytest.raises(ValidationError):
        fields.check_field_name(name)


def test_every_reserved_field_uses_the_prefix():
    assert all(name.startswith(fields.RESERVED_PREFIX) for name in fields.RESERVED_FIELDS)


def test_decode_record_accepts_bytes_and_str():
    assert fields.decode_record({b"a": b"1", "b": "2"}) == {"a": "1", "b": "2"}
    assert fields.decode_record(None) == {}


def test_split_record():
    meta, payload = fields.split_record({"_ttl": "60", "user": "u1"})
    assert meta == {"_ttl": "60"}
    assert payload == {"user": "u1"}
    assert fields.payload_of({"_ttl": "60", "user": "u1"}) == {"user": "u1"}


def test_int_field():
    assert fields.int_field({"_ttl": "60"}, "_ttl") == 60
    assert fields.int_field({}, "_ttl", default=5) == 5
    with pytest.raises(InvalidTokenError):
        fields.int_field({}, "_ttl")
    with pytest.raises(InvalidTokenError):
        fields.int_field({"_ttl": "sixty"}, "_ttl")
