"""Redis-specific exceptions for podsched-redis."""

from __future__ import annotations

from podsched_core.primitives.exceptions import (
    InfrastructureError,
    StoreUnavailableError,
)


class RedisError(InfrastructureError):
    """Base class for all Redis-related infrastructure errors."""


class RedisConnectionError(RedisError, StoreUnavailableError):
    """Raised when connectivity to Redis fails.

    Also a ``StoreUnavailableError``, so core code can catch it without
    knowing which store is in use.
    """
