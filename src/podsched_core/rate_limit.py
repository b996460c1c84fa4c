"""FixedWindowRateLimiter — shared counter throttle for producers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .primitives.durations import Duration, positive_seconds
from .primitives.exceptions import ConfigurationError, RateLimitExceededError

if TYPE_CHECKING:
    from .ports.store import IKeyValueStore

logger = logging.getLogger("podsched.rate_limit")


class FixedWindowRateLimiter:
    """Allow at most ``limit`` hits per ``window`` for a key, across replicas.

    The first hit of a window creates the counter together with its TTL in
    one atomic store call; the window resets when the counter expires.
    """

    def __init__(self, store: IKeyValueStore, *, prefix: str = "ratelimit") -> None:
        self._store = store
        self._prefix = prefix

    def counter_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def hit(self, key: str, limit: int, window: Duration) -> bool:
        """Record a hit. Returns False once the window's limit is exceeded."""
        if limit <= 0:
            raise ConfigurationError(f"limit must be positive, got {limit}")
        ttl = positive_seconds(window, name="window")
        counter = self.counter_key(key)

        count = await self._store.increment(counter, ttl=ttl)
        if count > limit:
            logger.debug("Rate limit hit for %s (%d > %d)", counter, count, limit)
            return False
        return True

    async def check(self, key: str, limit: int, window: Duration) -> None:
        """Like :meth:`hit` but raises :class:`RateLimitExceededError`."""
        if not await self.hit(key, limit, window):
            raise RateLimitExceededError(key, limit, positive_seconds(window))
