"""Tests for LeaseLock and lease-duration derivation."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import pytest

from podsched_core.instrumentation import (
    HookRegistry,
    OperationRecord,
    set_hook_registry,
)
from podsched_core.locking import LeaseLock, compute_lease_duration
from podsched_core.primitives import ConfigurationError

if TYPE_CHECKING:
    from conftest import ManualClock

    from podsched_core.adapters.memory import InMemoryKeyValueStore


@pytest.fixture
def lock(store: InMemoryKeyValueStore, clock: ManualClock) -> LeaseLock:
    return LeaseLock(store, clock=clock)


@pytest.fixture
def other(store: InMemoryKeyValueStore, clock: ManualClock) -> LeaseLock:
    """A second replica sharing the same store."""
    return LeaseLock(store, clock=clock)


class TestComputeLeaseDuration:
    """clamp(1.5 x expected, 30s, 300s)."""

    @pytest.mark.parametrize(
        ("expected", "lease"),
        [(5, 30.0), (20, 30.0), (60, 90.0), (200, 300.0), (3600, 300.0)],
    )
    def test_clamped(self, expected: float, lease: float) -> None:
        assert compute_lease_duration(expected) == lease

    def test_accepts_timedelta(self) -> None:
        assert compute_lease_duration(timedelta(minutes=1)) == 90.0

    def test_custom_bounds(self) -> None:
        assert compute_lease_duration(1, factor=2, minimum=0.5, maximum=10) == 2.0

    def test_rejects_non_positive(self) -> None:
        with pytest.raises(ConfigurationError):
            compute_lease_duration(0)


class TestTryAcquire:
    """Single-shot acquisition and release."""

    async def test_acquire_release(self, lock: LeaseLock, other: LeaseLock) -> None:
        lease = await lock.try_acquire("reports", 30)
        assert lease is not None
        assert lease.key == "lock:reports"

        assert await other.try_acquire("reports", 30) is None

        assert await lock.release(lease) is True
        assert await other.try_acquire("reports", 30) is not None

    async def test_mutual_exclusion_across_replicas(
        self, store: InMemoryKeyValueStore, clock: ManualClock
    ) -> None:
        replicas = [LeaseLock(store, clock=clock) for _ in range(10)]
        leases = await asyncio.gather(*(r.try_acquire("job", 30) for r in replicas))
        assert sum(1 for lease in leases if lease is not None) == 1

    async def test_lease_expires_and_is_taken_over(
        self, lock: LeaseLock, other: LeaseLock, clock: ManualClock
    ) -> None:
        stale = await lock.try_acquire("job", 30)
        assert stale is not None

        await clock.advance(30)
        fresh = await other.try_acquire("job", 30)
        assert fresh is not None

        # The expired holder must not touch the new holder's lease.
        assert await lock.extend(stale) is False
        assert await lock.release(stale) is False
        status = await other.status("job")
        assert status.is_locked is True

        assert await other.release(fresh) is True

    async def test_extend_resets_ttl(
        self, lock: LeaseLock, other: LeaseLock, clock: ManualClock
    ) -> None:
        lease = await lock.try_acquire("job", 30)
        assert lease is not None
        await clock.advance(20)
        assert await lock.extend(lease) is True
        await clock.advance(20)
        assert await other.try_acquire("job", 30) is None
        assert (await lock.status("job")).remaining_ttl == pytest.approx(10)

    async def test_rejects_non_positive_lease(self, lock: LeaseLock) -> None:
        with pytest.raises(ConfigurationError):
            await lock.try_acquire("job", 0)


class TestAcquireWithWait:
    """Polling acquisition bounded by max_wait."""

    async def test_times_out(
        self, lock: LeaseLock, other: LeaseLock, clock: ManualClock
    ) -> None:
        assert await lock.try_acquire("job", 60) is not None

        waiter = asyncio.create_task(
            other.acquire("job", 60, max_wait=1, poll_interval=0.2)
        )
        await clock.advance(2)
        assert await waiter is None

    async def test_acquires_once_released(
        self, lock: LeaseLock, other: LeaseLock, clock: ManualClock
    ) -> None:
        held = await lock.try_acquire("job", 60)
        assert held is not None

        waiter = asyncio.create_task(
            other.acquire("job", 60, max_wait=5, poll_interval=0.2)
        )
        await clock.advance(1)
        assert not waiter.done()

        await lock.release(held)
        await clock.advance(0.5)
        lease = await waiter
        assert lease is not None
        assert (await other.status("job")).is_locked is True

    async def test_cancel_event_aborts_wait(
        self, lock: LeaseLock, other: LeaseLock, clock: ManualClock
    ) -> None:
        assert await lock.try_acquire("job", 60) is not None
        cancel = asyncio.Event()

        waiter = asyncio.create_task(
            other.acquire("job", 60, max_wait=30, poll_interval=1, cancel=cancel)
        )
        await clock.advance(2.5)
        cancel.set()
        await clock.settle()
        assert waiter.done()
        assert await waiter is None


class TestWatchdog:
    """Automatic lease renewal."""

    async def test_keeps_lease_alive(
        self, lock: LeaseLock, other: LeaseLock, clock: ManualClock
    ) -> None:
        lease = await lock.try_acquire("job", 3, watchdog=True)
        assert lease is not None
        assert lock.active_watchdogs() == {lease.token: "lease-watchdog:lock:job"}

        await clock.advance(20)
        assert await other.try_acquire("job", 3) is None

        assert await lock.release(lease) is True
        assert lock.active_watchdogs() == {}

    async def test_stops_when_lease_is_lost(
        self,
        lock: LeaseLock,
        store: InMemoryKeyValueStore,
        clock: ManualClock,
    ) -> None:
        lease = await lock.try_acquire("job", 30, watchdog=True)
        assert lease is not None

        store.clear()
        await clock.advance(10)
        assert lock.active_watchdogs() == {}

    async def test_close_cancels_watchdogs(
        self, lock: LeaseLock, clock: ManualClock
    ) -> None:
        await lock.try_acquire("a", 30, watchdog=True)
        await lock.try_acquire("b", 30, watchdog=True)
        assert len(lock.active_watchdogs()) == 2

        await lock.close()
        assert lock.active_watchdogs() == {}
        # Leases are left to expire on their own.
        assert (await lock.status("a")).is_locked is True


class TestHold:
    """Context-manager usage."""

    async def test_hold_releases_on_exit(
        self, lock: LeaseLock, other: LeaseLock
    ) -> None:
        async with lock.hold("job", 30) as lease:
            assert lease is not None
            async with other.hold("job", 30) as contender:
                assert contender is None
        assert (await lock.status("job")).is_locked is False

    async def test_hold_releases_on_error(self, lock: LeaseLock) -> None:
        with pytest.raises(RuntimeError):
            async with lock.hold("job", 30):
                raise RuntimeError("boom")
        assert (await lock.status("job")).is_locked is False


async def test_status_reports_ttl(lock: LeaseLock, clock: ManualClock) -> None:
    assert (await lock.status("job")).is_locked is False

    await lock.try_acquire("job", 30)
    await clock.advance(10)
    status = await lock.status("job")
    assert status.key == "lock:job"
    assert status.is_locked is True
    assert status.remaining_ttl == pytest.approx(20)


async def test_hooks_wrap_acquire_and_release(lock: LeaseLock) -> None:
    seen: list[tuple[str, str | None]] = []

    async def record(entry: OperationRecord, next_handler: Any) -> Any:
        result = await next_handler()
        seen.append((entry.name, entry.outcome))
        return result

    registry = HookRegistry()
    registry.register(record, operations=["lock.*"])
    set_hook_registry(registry)

    lease = await lock.try_acquire("job", 30)
    assert lease is not None
    assert await lock.try_acquire("job", 30) is None
    await lock.release(lease)
    await lock.release(lease)

    assert seen == [
        ("lock.acquire.job", "acquired"),
        ("lock.acquire.job", "busy"),
        ("lock.release.lock:job", "released"),
        ("lock.release.lock:job", "lost"),
    ]
