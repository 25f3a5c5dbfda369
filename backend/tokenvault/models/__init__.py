"""
tokenvault.models
=================

In-memory projections of persisted token records.

- :class:`~.AccessToken`: short-lived bearer credential.
- :class:`~.RefreshToken`: long-lived credential exchanged for access tokens.
- :class:`~.Token` and :class:`~.MetaData`: single-token variant with one optional child.

Record layout helpers (reserved field names, value codec) live in :mod:`.fields`.
"""

from __future__ import annotations

from .access_token import AccessToken
from .base import BaseToken
from .refresh_token import RefreshToken
from .token import MetaData, Token

__all__ = ["BaseToken", "AccessToken", "RefreshToken", "Token", "MetaData"]
