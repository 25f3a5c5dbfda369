"""Time-ordered opaque token identifiers (ULIDs via ``python-ulid``)."""

from __future__ import annotations

import threading
import time
from typing import Final

from ulid import ULID

from tokenvault.services._shared.errors import TokenGenerationError

# Crockford base32 (no I, L, O, U)
ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
VALUE_LENGTH: Final[int] = 26

_RANDOM_MAX = (1 << 80) - 1
_TIME_MAX = (1 << 48) - 1


class ULIDGenerator:
    """
    Generate lexicographically sortable, time-ordered identifiers.

    Values produced in the same millisecond are monotonic: the previous
    value is incremented instead of drawing new randomness, so two calls in
    one process never return the same value.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last: ULID | None = None

    def generate(self) -> str:
        """
        Return a new identifier.

        :raises TokenGenerationError: If the random part overflows within one millisecond.
        """
        with self._lock:
            now_ms = int(time.time() * 1000)
            if now_ms > _TIME_MAX:
                raise TokenGenerationError("clock is beyond the identifier time range")
            last = self._last
            if last is not None and now_ms <= last.milliseconds:
                # same tick (or clock stepped back): continue after the last value
                if int(last) & _RANDOM_MAX == _RANDOM_MAX:
                    raise TokenGenerationError("identifier space exhausted for this millisecond")
                candidate = ULID.from_int(int(last) + 1)
            else:
                candidate = ULID.from_timestamp(now_ms)
            self._last = candidate
        return str(candidate)


def _parse(value: object) -> ULID | None:
    if not isinstance(value, str) or len(value) != VALUE_LENGTH:
        return None
    upper = value.upper()
    # a leading digit above 7 would overflow the 48-bit timestamp
    if upper[0] > "7" or not set(upper) <= set(ALPHABET):
        return None
    try:
        return ULID.from_str(upper)
    except ValueError:
        return None


def is_well_formed(value: object) -> bool:
    """Return ``True`` when ``value`` parses as an identifier."""
    return _parse(value) is not None


def timestamp_of(value: str) -> int:
    """
    Return the millisecond timestamp embedded in ``value``.

    :raises ValueError: If ``value`` is not well formed.
    """
    parsed = _parse(value)
    if parsed is None:
        raise ValueError(f"not a well-formed identifier: {value!r}")
    return parsed.milliseconds


_default = ULIDGenerator()


def generate() -> str:
    """Return a new identifier from the process-wide generator."""
    return _default.generate()


__all__ = ["ULIDGenerator", "generate", "is_well_formed", "timestamp_of", "ALPHABET"]
