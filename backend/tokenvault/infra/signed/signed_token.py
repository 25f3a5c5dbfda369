"""
Stateless signed tokens.

Wire format: ``base64url(json(claims)) + "." + hex(hmac_sha256(secret, json))``.
Nothing is stored; a token is valid while its signature matches and its
activation/expiry claims allow it. Such tokens cannot be revoked before they
expire.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from typing import Any

from tokenvault.services._shared.errors import (
    ConfigurationError,
    ExpiredTokenError,
    InvalidTokenError,
    MalformedTokenError,
    SignatureError,
    ValidationError,
)

_ACTIVATED_AT = "claims_at"
_EXPIRES_AT = "claims_exp"
_DATA = "data"


@dataclass(frozen=True, slots=True)
class Claims:
    """
    Signed token body.

    :param data: Caller claims (JSON-serializable).
    :type data: dict[str, Any]
    :param activated_at: Unix seconds before which the token is not usable (``0`` = immediately).
    :type activated_at: int
    :param expires_at: Unix seconds after which the token is expired (``0`` = never).
    :type expires_at: int
    """

    data: dict[str, Any] = field(default_factory=dict)
    activated_at: int = 0
    expires_at: int = 0

    def activated(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return self.activated_at <= now

    def expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at != 0 and self.expires_at < now

    def valid(self, now: float | None = None) -> bool:
        """Active and not expired, evaluated at a single instant."""
        now = time.time() if now is None else now
        return self.activated(now) and not self.expired(now)

    def to_json(self) -> bytes:
        body: dict[str, Any] = {_DATA: self.data}
        if self.activated_at:
            body[_ACTIVATED_AT] = self.activated_at
        if self.expires_at:
            body[_EXPIRES_AT] = self.expires_at
        try:
            return json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise ValidationError("claims data must be JSON-serializable") from exc

    @classmethod
    def from_json(cls, raw: bytes) -> Claims:
        """:raises MalformedTokenError: If ``raw`` is not a claims object."""
        try:
            body = json.loads(raw)
            data = body.get(_DATA, {})
            activated_at = int(body.get(_ACTIVATED_AT, 0))
            expires_at = int(body.get(_EXPIRES_AT, 0))
        except (ValueError, TypeError, AttributeError) as exc:
            raise MalformedTokenError() from exc
        if not isinstance(data, dict):
            raise MalformedTokenError()
        return cls(data=data, activated_at=activated_at, expires_at=expires_at)


class SignedTokenCodec:
    """
    Encode and verify signed tokens with a shared secret.

    :param secret: HMAC key; must not be empty.
    :raises ConfigurationError: If ``secret`` is empty.
    """

    def __init__(self, secret: str | bytes) -> None:
        key = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
        if not key:
            raise ConfigurationError("signed tokens need a non-empty secret")
        self._key = key

    def _sign(self, body: bytes) -> str:
        return hmac.new(self._key, body, hashlib.sha256).hexdigest()

    def encode(self, claims: Claims) -> str:
        body = claims.to_json()
        encoded = base64.urlsafe_b64encode(body).decode("ascii")
        return f"{encoded}.{self._sign(body)}"

    def _verify(self, token: str) -> Claims:
        if not isinstance(token, str) or token.count(".") != 1:
            raise MalformedTokenError()
        encoded, signature = token.split(".")
        try:
            body = base64.b64decode(encoded.encode("ascii"), altchars=b"-_", validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise MalformedTokenError() from exc
        expected = self._sign(body).encode("ascii")
        if not hmac.compare_digest(expected, signature.lower().encode("utf-8")):
            raise SignatureError()
        return Claims.from_json(body)

    def decode(self, token: str) -> Claims:
        """
        Verify ``token`` and return its claims.

        :raises MalformedTokenError: If the token cannot be split or decoded.
        :raises SignatureError: If the signature does not match.
        :raises InvalidTokenError: If the token is not active yet.
        :raises ExpiredTokenError: If the token has expired.
        """
        claims = self._verify(token)
        now = time.time()
        if not claims.activated(now):
            raise InvalidTokenError("token not active yet")
        if claims.expired(now):
            raise ExpiredTokenError()
        return claims

    def fast_valid(self, token: str, check_exp: bool = True) -> bool:
        """
        Cheap yes/no check: signature and expiry only (activation is ignored).

        With ``check_exp`` a token without an expiry claim is rejected.
        """
        try:
            claims = self._verify(token)
        except (InvalidTokenError, SignatureError):
            return False
        if not check_exp:
            return True
        return claims.expires_at != 0 and not claims.expired()


__all__ = ["Claims", "SignedTokenCodec"]
