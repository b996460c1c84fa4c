"""InMemoryKeyValueStore — in-process implementation of IKeyValueStore."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ...ports.store import IKeyValueStore
from ...primitives.clock import Clock, SystemClock

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger("podsched.memory.store")


@dataclass
class _Entry:
    """A plain key with optional monotonic expiry."""

    value: str
    expires_at: float | None = None


class InMemoryKeyValueStore(IKeyValueStore):
    """
    In-memory implementation of IKeyValueStore.

    Features:
    - TTL expiry driven by an injectable :class:`Clock` (monotonic time), so
      tests can simulate lease expiry without sleeping
    - Every operation runs under a single ``asyncio.Lock``, giving the same
      all-or-nothing semantics as a Redis Lua script
    - Ordered sets sorted by ``(score, member)`` like Redis

    Several lock/queue instances sharing one store object behave like
    several replicas sharing one Redis.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._entries: dict[str, _Entry] = {}
        self._sorted: dict[str, dict[str, float]] = {}
        self._global_lock = asyncio.Lock()
        self._closed = False

    # ── helpers ──────────────────────────────────────────────────────

    def _live(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock.monotonic() >= entry.expires_at:
            # Lazy expiry, same observable behaviour as Redis passive expiry.
            self._entries.pop(key, None)
            logger.debug("Key expired: %s", key)
            return None
        return entry

    def _deadline(self, ttl: float) -> float:
        return self._clock.monotonic() + ttl

    def _ordered(self, name: str) -> list[tuple[str, float]]:
        members = self._sorted.get(name, {})
        return sorted(members.items(), key=lambda item: (item[1], item[0]))

    # ── plain keys ───────────────────────────────────────────────────

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        async with self._global_lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = _Entry(value=value, expires_at=self._deadline(ttl))
            return True

    async def get(self, key: str) -> str | None:
        async with self._global_lock:
            entry = self._live(key)
            return entry.value if entry else None

    async def expire(self, key: str, ttl: float) -> bool:
        async with self._global_lock:
            entry = self._live(key)
            if entry is None:
                return False
            entry.expires_at = self._deadline(ttl)
            return True

    async def time_to_live(self, key: str) -> float | None:
        async with self._global_lock:
            entry = self._live(key)
            if entry is None or entry.expires_at is None:
                return None
            return max(0.0, entry.expires_at - self._clock.monotonic())

    async def increment(self, key: str, ttl: float | None = None) -> int:
        async with self._global_lock:
            entry = self._live(key)
            if entry is None:
                expires_at = None if ttl is None else self._deadline(ttl)
                self._entries[key] = _Entry(value="1", expires_at=expires_at)
                return 1
            count = int(entry.value) + 1
            entry.value = str(count)
            return count

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        async with self._global_lock:
            entry = self._live(key)
            if entry is None or entry.value != expected:
                return False
            del self._entries[key]
            return True

    async def compare_and_extend(self, key: str, expected: str, ttl: float) -> bool:
        async with self._global_lock:
            entry = self._live(key)
            if entry is None or entry.value != expected:
                return False
            entry.expires_at = self._deadline(ttl)
            return True

    # ── ordered sets ─────────────────────────────────────────────────

    async def add_scored(
        self,
        name: str,
        members: Mapping[str, float],
        *,
        overwrite: bool = True,
    ) -> int:
        async with self._global_lock:
            scored = self._sorted.setdefault(name, {})
            added = 0
            for member, score in members.items():
                if member in scored:
                    if overwrite:
                        scored[member] = float(score)
                    continue
                scored[member] = float(score)
                added += 1
            return added

    async def range_by_score_and_remove(
        self, name: str, max_score: float, limit: int
    ) -> list[str]:
        async with self._global_lock:
            due = [m for m, s in self._ordered(name) if s <= max_score][: max(0, limit)]
            scored = self._sorted.get(name, {})
            for member in due:
                scored.pop(member, None)
            if not scored:
                self._sorted.pop(name, None)
            return due

    async def count(self, name: str) -> int:
        async with self._global_lock:
            return len(self._sorted.get(name, {}))

    async def count_by_score(
        self, name: str, min_score: float, max_score: float
    ) -> int:
        async with self._global_lock:
            return sum(
                1
                for score in self._sorted.get(name, {}).values()
                if min_score <= score <= max_score
            )

    async def range_by_score(
        self,
        name: str,
        min_score: float,
        max_score: float,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[tuple[str, float]]:
        async with self._global_lock:
            matching = [
                (m, s) for m, s in self._ordered(name) if min_score <= s <= max_score
            ]
            end = None if limit is None else offset + limit
            return matching[offset:end]

    async def remove_scored(self, name: str, members: Sequence[str]) -> int:
        async with self._global_lock:
            scored = self._sorted.get(name, {})
            removed = sum(1 for m in members if scored.pop(m, None) is not None)
            if not scored:
                self._sorted.pop(name, None)
            return removed

    # ── lifecycle ────────────────────────────────────────────────────

    async def ping(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True

    def clear(self) -> None:
        """Drop all keys and ordered sets (for testing)."""
        self._entries.clear()
        self._sorted.clear()
