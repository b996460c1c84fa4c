"""Shared fixtures: a manually driven clock and stores bound to it."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from podsched_core.adapters.memory import InMemoryKeyValueStore
from podsched_core.settings import SchedulerSettings

# Event-loop passes after each wake-up so that woken tasks can run up to
# their next sleep before virtual time moves on.
_SETTLE_ROUNDS = 50


class ManualClock:
    """Virtual clock: time only moves when a test calls :meth:`advance`.

    ``sleep`` parks the caller until virtual time reaches its deadline.
    ``advance`` steps from deadline to deadline, waking sleepers in order,
    so loops, leases and watchdogs observe the same timeline they would in
    real time.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._start = start or datetime(2024, 1, 15, 12, 0, 0)
        self._elapsed = 0.0
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    # ── Clock protocol ──────────────────────────────────────────────

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def time(self) -> float:
        return self._start.replace(tzinfo=timezone.utc).timestamp() + self._elapsed

    def monotonic(self) -> float:
        return self._elapsed

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._elapsed + delay, future))
        await future

    # ── Test controls ───────────────────────────────────────────────

    def set_hour(self, hour: int) -> None:
        """Move the wall clock to ``hour`` of the current day."""
        current = self.now()
        target = current.replace(hour=hour)
        self._start += target - current

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, future in self._sleepers if not future.done())

    async def settle(self) -> None:
        for _ in range(_SETTLE_ROUNDS):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, waking every sleeper that falls due."""
        target = self._elapsed + seconds
        await self.settle()
        while True:
            self._sleepers = [(d, f) for d, f in self._sleepers if not f.done()]
            due = [d for d, _ in self._sleepers if d <= target]
            if not due:
                break
            self._elapsed = max(self._elapsed, min(due))
            for deadline, future in self._sleepers:
                if deadline <= self._elapsed and not future.done():
                    future.set_result(None)
            await self.settle()
        self._elapsed = target
        await self.settle()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock: ManualClock) -> InMemoryKeyValueStore:
    """A store shared by every component in a test, like one Redis for all replicas."""
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def settings() -> SchedulerSettings:
    return SchedulerSettings(max_initial_jitter=0, shutdown_grace_period=5)
