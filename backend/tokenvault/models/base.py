"""Common behaviour of every store-backed credential."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tokenvault.services._shared.base import BaseEngine


class BaseToken:
    """
    A revocable credential backed by one Redis hash.

    Instances are a cached projection of the record: the record's existence
    in the store is what makes the token valid, and every mutating call goes
    through the owning engine.

    :param engine: Engine that issued or parsed the token.
    :param value: Opaque token value (record key suffix).
    :param payload: Caller payload as stored (string values).
    """

    def __init__(self, engine: BaseEngine, value: str, payload: dict[str, str]) -> None:
        self._engine = engine
        self._value = value
        self._payload = dict(payload)

    @property
    def value(self) -> str:
        return self._value

    @property
    def key(self) -> str:
        """Store key of the backing record."""
        return self._engine.key(self._value)

    @property
    def payload(self) -> dict[str, str]:
        """Payload snapshot taken at issue/parse time (plus local ``set`` calls)."""
        return dict(self._payload)

    def get(self, field: str) -> str | None:
        """Read one payload field from the store."""
        return self._engine.get_field(self._value, field)

    def get_all(self, include_metadata: bool = False) -> dict[str, str]:
        """Read the whole record; reserved fields are stripped unless requested."""
        return self._engine.get_all(self._value, include_metadata=include_metadata)

    def set(self, field: str, value: Any) -> None:
        """Write one payload field (the record must still exist)."""
        self._payload[field] = self._engine.set_field(self._value, field, value)

    def ttl_remaining(self) -> int | None:
        """Seconds until the store expires the record (``None`` when it never expires)."""
        return self._engine.ttl_remaining(self._value)

    def destroy(self) -> None:
        """Delete the record. Deleting an absent record is not an error."""
        self._engine.delete(self._value)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._engine.redact(self._value)}>"
