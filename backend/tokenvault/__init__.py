"""
tokenvault
==========

Redis-backed token lifecycle: issue, parse, refresh, exchange (rotation) and
revoke opaque access/refresh token pairs, or single tokens with one child.

Typical use::

    import redis
    from tokenvault import ManagerOptions, TokenManager

    manager = TokenManager(redis.Redis(), ManagerOptions(access_token_ttl=600))
    pair = manager.issue_token_pair({"user_id": "42"})
    access = manager.exchange(pair.refresh.value)
"""

from __future__ import annotations

from tokenvault.infra.signed.signed_token import Claims, SignedTokenCodec
from tokenvault.models import AccessToken, MetaData, RefreshToken, Token
from tokenvault.services._shared.errors import (
    AlreadyHasChildError,
    CollisionError,
    ConfigurationError,
    ExpiredTokenError,
    InfrastructureError,
    InvalidTokenError,
    LogicError,
    MalformedTokenError,
    OperationTimeoutError,
    RefreshLimitError,
    ReservedFieldError,
    SignatureError,
    StoreError,
    TokenError,
    TokenGenerationError,
    TokenMismatchError,
    TransactionAbortedError,
    ValidationError,
)
from tokenvault.services.manager.dto import CredentialMode, ManagerOptions, TokenPair
from tokenvault.services.manager.service import TokenManager
from tokenvault.services.refresh.dto import RotationPolicy

__version__ = "0.1.0"

__all__ = [
    "TokenManager",
    "ManagerOptions",
    "CredentialMode",
    "RotationPolicy",
    "TokenPair",
    "AccessToken",
    "RefreshToken",
    "Token",
    "MetaData",
    "Claims",
    "SignedTokenCodec",
    "TokenError",
    "LogicError",
    "InfrastructureError",
    "InvalidTokenError",
    "MalformedTokenError",
    "ExpiredTokenError",
    "SignatureError",
    "RefreshLimitError",
    "TokenMismatchError",
    "AlreadyHasChildError",
    "ValidationError",
    "ReservedFieldError",
    "ConfigurationError",
    "StoreError",
    "OperationTimeoutError",
    "TransactionAbortedError",
    "CollisionError",
    "TokenGenerationError",
]
