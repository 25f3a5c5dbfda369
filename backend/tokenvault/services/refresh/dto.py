# tokenvault/services/refresh/dto.py
from __future__ import annotations

from enum import Enum


class RotationPolicy(str, Enum):
    """
    What an exchange does to the refresh token itself.

    - ``REUSABLE``: the refresh token keeps its value and its expiry; only the
      bound access token is replaced.
    - ``ONE_SHOT``: the refresh token is replaced by a successor with a new
      value and a fresh lifetime, in the same transaction.
    """

    REUSABLE = "reusable"
    ONE_SHOT = "one_shot"
