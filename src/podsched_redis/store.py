"""RedisKeyValueStore — IKeyValueStore on top of ``redis.asyncio``."""

from __future__ import annotations

import contextlib
import logging
import math
from typing import TYPE_CHECKING, Any

import redis.asyncio as aioredis
from redis import exceptions as redis_exceptions

from podsched_core.ports.store import IKeyValueStore
from podsched_core.primitives.durations import to_millis
from podsched_core.settings import SchedulerSettings

from .exceptions import RedisConnectionError, RedisError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

logger = logging.getLogger("podsched.redis.store")

# KEYS[1]=key, ARGV[1]=expected token
_COMPARE_AND_DELETE = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""

# KEYS[1]=key, ARGV[1]=expected token, ARGV[2]=ttl in ms
_COMPARE_AND_EXTEND = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("PEXPIRE", KEYS[1], ARGV[2])
else
    return 0
end
"""

# KEYS[1]=counter, ARGV[1]=ttl in ms applied when the counter is created
_INCREMENT_WITH_TTL = """
local count = redis.call("INCR", KEYS[1])
if count == 1 then
    redis.call("PEXPIRE", KEYS[1], ARGV[1])
end
return count
"""

# KEYS[1]=ordered set, ARGV[1]=max score, ARGV[2]=limit
_RANGE_AND_REMOVE = """
local items = redis.call(
    "ZRANGEBYSCORE", KEYS[1], "-inf", ARGV[1], "LIMIT", 0, ARGV[2]
)
if #items > 0 then
    redis.call("ZREM", KEYS[1], unpack(items))
end
return items
"""


def _ttl_ms(ttl: float) -> int:
    # PX 0 is rejected by Redis.
    return max(1, to_millis(ttl))


def _score_bound(value: float) -> str | float:
    if math.isinf(value):
        return "+inf" if value > 0 else "-inf"
    return value


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class RedisKeyValueStore(IKeyValueStore):
    """
    Redis implementation of the shared store.

    Compare-and-delete, compare-and-extend and consume-due-members run as
    Lua scripts so each is a single atomic step on the server. TTLs are sent
    in milliseconds (``PX`` / ``PEXPIRE``).

    Works with clients created with or without ``decode_responses``.

    Example:
        ```python
        store = RedisKeyValueStore.from_url("redis://localhost:6379/0")
        lock = LeaseLock(store)
        queue = DelayQueue(store)
        ```
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisKeyValueStore:
        """Create a store with its own connection pool."""
        kwargs.setdefault("decode_responses", True)
        return cls(aioredis.from_url(url, **kwargs))

    @classmethod
    def from_settings(
        cls, settings: SchedulerSettings | None = None, **kwargs: Any
    ) -> RedisKeyValueStore:
        """Create a store for ``settings.redis_url`` (``PODSCHED_REDIS_URL``)."""
        settings = settings or SchedulerSettings()
        return cls.from_url(settings.redis_url, **kwargs)

    @property
    def client(self) -> aioredis.Redis:
        return self._redis

    @contextlib.contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (
            redis_exceptions.ConnectionError,
            redis_exceptions.TimeoutError,
        ) as exc:
            raise RedisConnectionError(f"Redis {operation} failed: {exc}") from exc
        except redis_exceptions.RedisError as exc:
            raise RedisError(f"Redis {operation} failed: {exc}") from exc

    # ── Plain keys ───────────────────────────────────────────────────

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        with self._translate_errors("SET NX"):
            result = await self._redis.set(key, value, nx=True, px=_ttl_ms(ttl))
        return bool(result)

    async def get(self, key: str) -> str | None:
        with self._translate_errors("GET"):
            value = await self._redis.get(key)
        return None if value is None else _text(value)

    async def expire(self, key: str, ttl: float) -> bool:
        with self._translate_errors("PEXPIRE"):
            return bool(await self._redis.pexpire(key, _ttl_ms(ttl)))

    async def time_to_live(self, key: str) -> float | None:
        with self._translate_errors("PTTL"):
            remaining = await self._redis.pttl(key)
        # -2: missing, -1: no expiry
        if remaining is None or remaining < 0:
            return None
        return remaining / 1000.0

    async def increment(self, key: str, ttl: float | None = None) -> int:
        with self._translate_errors("INCR"):
            if ttl is None:
                return int(await self._redis.incr(key))
            return int(
                await self._redis.eval(_INCREMENT_WITH_TTL, 1, key, _ttl_ms(ttl))
            )

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._translate_errors("compare-and-delete"):
            result = await self._redis.eval(_COMPARE_AND_DELETE, 1, key, expected)
        return bool(result)

    async def compare_and_extend(self, key: str, expected: str, ttl: float) -> bool:
        with self._translate_errors("compare-and-extend"):
            result = await self._redis.eval(
                _COMPARE_AND_EXTEND, 1, key, expected, _ttl_ms(ttl)
            )
        return bool(result)

    # ── Ordered sets ─────────────────────────────────────────────────

    async def add_scored(
        self,
        name: str,
        members: Mapping[str, float],
        *,
        overwrite: bool = True,
    ) -> int:
        if not members:
            return 0
        with self._translate_errors("ZADD"):
            added = await self._redis.zadd(name, dict(members), nx=not overwrite)
        return int(added or 0)

    async def range_by_score_and_remove(
        self, name: str, max_score: float, limit: int
    ) -> list[str]:
        if limit <= 0:
            return []
        with self._translate_errors("consume-due"):
            items = await self._redis.eval(
                _RANGE_AND_REMOVE, 1, name, _score_bound(max_score), limit
            )
        return [_text(item) for item in items or []]

    async def count(self, name: str) -> int:
        with self._translate_errors("ZCARD"):
            return int(await self._redis.zcard(name))

    async def count_by_score(
        self, name: str, min_score: float, max_score: float
    ) -> int:
        with self._translate_errors("ZCOUNT"):
            return int(
                await self._redis.zcount(
                    name, _score_bound(min_score), _score_bound(max_score)
                )
            )

    async def range_by_score(
        self,
        name: str,
        min_score: float,
        max_score: float,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[tuple[str, float]]:
        paging: dict[str, int] = {}
        if limit is not None or offset:
            # Redis needs both LIMIT arguments; -1 means "no limit".
            paging = {"start": offset, "num": -1 if limit is None else limit}
        with self._translate_errors("ZRANGEBYSCORE"):
            rows = await self._redis.zrangebyscore(
                name,
                _score_bound(min_score),
                _score_bound(max_score),
                withscores=True,
                **paging,
            )
        return [(_text(member), float(score)) for member, score in rows]

    async def remove_scored(self, name: str, members: Sequence[str]) -> int:
        if not members:
            return 0
        with self._translate_errors("ZREM"):
            return int(await self._redis.zrem(name, *members))

    # ── Lifecycle ────────────────────────────────────────────────────

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        await self._redis.aclose()
