"""Clock abstraction so time-dependent behaviour can be driven in tests."""

from __future__ import annotations

import asyncio
import contextlib
import time
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Time source used by stores, queues and the scheduler."""

    def now(self) -> datetime:
        """Local wall-clock time (used for hour gating)."""
        ...

    def time(self) -> float:
        """Seconds since the Unix epoch (used for delay-queue scores)."""
        ...

    def monotonic(self) -> float:
        """Monotonic seconds (used for TTLs and run windows)."""
        ...

    async def sleep(self, delay: float) -> None:
        """Suspend the caller for ``delay`` seconds."""
        ...


class SystemClock:
    """Clock backed by the real system time and ``asyncio.sleep``."""

    def now(self) -> datetime:
        return datetime.now()

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))


def utc_from_millis(millis: float) -> datetime:
    return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)


async def interruptible_sleep(
    clock: Clock, delay: float, stop: asyncio.Event | None
) -> bool:
    """Sleep for ``delay`` unless ``stop`` fires first.

    Returns:
        True if the full delay elapsed, False if ``stop`` was (or became) set.
    """
    if stop is None:
        await clock.sleep(delay)
        return True
    if stop.is_set():
        return False

    sleeper = asyncio.ensure_future(clock.sleep(delay))
    waiter = asyncio.ensure_future(stop.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, waiter):
            task.cancel()
        for task in (sleeper, waiter):
            with contextlib.suppress(asyncio.CancelledError):
                await task
    return not stop.is_set()
