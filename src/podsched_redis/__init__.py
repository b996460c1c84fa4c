"""Redis integration for podsched."""

from __future__ import annotations

from .exceptions import RedisConnectionError, RedisError
from .store import RedisKeyValueStore

__all__ = [
    "RedisKeyValueStore",
    "RedisError",
    "RedisConnectionError",
]
