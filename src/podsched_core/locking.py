"""Lease-based distributed mutual exclusion over the shared key-value store."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, cast

from .instrumentation import get_hook_registry
from .primitives.clock import Clock, SystemClock, interruptible_sleep
from .primitives.durations import Duration, positive_seconds
from .primitives.identity import generate_token

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .ports.store import IKeyValueStore

logger = logging.getLogger("podsched.locking")

# Lease bounds applied by compute_lease_duration().
MIN_LEASE_SECONDS: float = 30.0
MAX_LEASE_SECONDS: float = 300.0
LEASE_FACTOR: float = 1.5


def compute_lease_duration(
    expected: Duration,
    *,
    factor: float = LEASE_FACTOR,
    minimum: float = MIN_LEASE_SECONDS,
    maximum: float = MAX_LEASE_SECONDS,
) -> float:
    """Derive a lease duration from the expected duration of the protected work.

    ``clamp(factor * expected, minimum, maximum)``. Too short and the lease
    expires mid-run so another replica starts a duplicate; too long and a
    crashed holder blocks failover.
    """
    seconds = positive_seconds(expected, name="expected duration")
    return max(minimum, min(seconds * factor, maximum))


@dataclass(frozen=True)
class Lease:
    """A held lease: the store key plus the random token proving ownership."""

    key: str
    token: str
    lease_duration: float
    acquired_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )


@dataclass(frozen=True)
class LockStatus:
    """Observed state of a lock key."""

    key: str
    is_locked: bool
    remaining_ttl: float


class LeaseLock:
    """
    Token-guarded, TTL-bounded distributed lock.

    Hardened Reliability Features:
    - Set-if-absent with TTL for acquisition (a crashed holder's lease
      expires on its own)
    - Compare-and-delete release and compare-and-extend renewal, so no
      process ever touches a lease it does not hold
    - Optional watchdog task per lease, renewing every ``lease_duration / 3``

    Non-acquisition is an expected outcome and is reported as ``None``,
    never as an exception.

    Example:
        ```python
        lock = LeaseLock(store)

        lease = await lock.try_acquire("reports:nightly", lease_duration=60)
        if lease is None:
            return  # another replica holds it
        try:
            ...
        finally:
            await lock.release(lease)
        ```
    """

    def __init__(
        self,
        store: IKeyValueStore,
        *,
        prefix: str = "lock",
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize LeaseLock.

        Args:
            store: Shared key-value store.
            prefix: Key prefix; the lock for ``key`` lives at ``{prefix}:{key}``.
            clock: Time source for acquire deadlines and watchdog sleeps.
        """
        self._store = store
        self._prefix = prefix
        self._clock = clock or SystemClock()
        self._watchdogs: dict[str, asyncio.Task[None]] = {}

    def lock_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def try_acquire(
        self,
        key: str,
        lease_duration: Duration,
        *,
        watchdog: bool = False,
    ) -> Lease | None:
        """
        Attempt a single non-blocking acquisition.

        Args:
            key: Logical lock name.
            lease_duration: Lease TTL (seconds or timedelta).
            watchdog: Start a renewal task for the returned lease.

        Returns:
            The held :class:`Lease`, or None if another holder has it.
        """
        ttl = positive_seconds(lease_duration, name="lease_duration")
        registry = get_hook_registry()
        return cast(
            "Lease | None",
            await registry.run(
                "lock.acquire",
                key,
                lambda: self._try_acquire_internal(key, ttl, watchdog),
                attributes={"ttl": ttl, "watchdog": watchdog},
                classify=lambda lease: "acquired" if lease else "busy",
            ),
        )

    async def _try_acquire_internal(
        self, key: str, ttl: float, watchdog: bool
    ) -> Lease | None:
        store_key = self.lock_key(key)
        token = generate_token()
        if not await self._store.set_if_absent(store_key, token, ttl):
            logger.debug("Lock busy: %s", store_key)
            return None

        lease = Lease(key=store_key, token=token, lease_duration=ttl)
        logger.debug("Lock acquired: %s (ttl=%.1fs)", store_key, ttl)
        if watchdog:
            self._start_watchdog(lease)
        return lease

    async def acquire(
        self,
        key: str,
        lease_duration: Duration,
        *,
        max_wait: Duration,
        poll_interval: Duration = 0.2,
        watchdog: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> Lease | None:
        """
        Retry :meth:`try_acquire` every ``poll_interval`` until success or ``max_wait``.

        Args:
            key: Logical lock name.
            lease_duration: Lease TTL.
            max_wait: Hard ceiling on the time spent waiting.
            poll_interval: Delay between attempts.
            watchdog: Start a renewal task for the returned lease.
            cancel: Setting this event aborts the wait immediately.

        Returns:
            The held :class:`Lease`, or None on timeout or cancellation.
        """
        wait = positive_seconds(max_wait, name="max_wait")
        interval = positive_seconds(poll_interval, name="poll_interval")
        deadline = self._clock.monotonic() + wait

        while True:
            lease = await self.try_acquire(key, lease_duration, watchdog=watchdog)
            if lease is not None:
                return lease

            remaining = deadline - self._clock.monotonic()
            if remaining <= 0:
                logger.debug("Lock wait timed out after %.1fs: %s", wait, key)
                return None
            if not await interruptible_sleep(
                self._clock, min(interval, remaining), cancel
            ):
                logger.debug("Lock wait cancelled: %s", key)
                return None

    async def release(self, lease: Lease) -> bool:
        """
        Release the lease if it is still ours (compare-and-delete).

        Returns:
            True if the key was deleted, False if it had expired or was
            taken over by another holder.
        """
        await self._stop_watchdog(lease)
        registry = get_hook_registry()
        released = cast(
            "bool",
            await registry.run(
                "lock.release",
                lease.key,
                lambda: self._store.compare_and_delete(lease.key, lease.token),
                classify=lambda released: "released" if released else "lost",
            ),
        )
        if released:
            logger.debug("Lock released: %s", lease.key)
        else:
            logger.debug("Lock already gone or taken over: %s", lease.key)
        return released

    async def extend(
        self, lease: Lease, lease_duration: Duration | None = None
    ) -> bool:
        """Reset the lease TTL if it is still ours (compare-and-extend)."""
        ttl = (
            lease.lease_duration
            if lease_duration is None
            else positive_seconds(lease_duration, name="lease_duration")
        )
        return await self._store.compare_and_extend(lease.key, lease.token, ttl)

    @contextlib.asynccontextmanager
    async def hold(
        self,
        key: str,
        lease_duration: Duration,
        *,
        watchdog: bool = False,
    ) -> AsyncIterator[Lease | None]:
        """
        Context manager around :meth:`try_acquire` / :meth:`release`.

        Yields None when the lock is busy; the body decides what to do.
        """
        lease = await self.try_acquire(key, lease_duration, watchdog=watchdog)
        try:
            yield lease
        finally:
            if lease is not None:
                try:
                    await self.release(lease)
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "Failed to release lock %s: %s (will auto-expire)",
                        lease.key,
                        exc,
                    )

    async def status(self, key: str) -> LockStatus:
        """Report whether ``key`` is currently locked and for how long."""
        store_key = self.lock_key(key)
        holder = await self._store.get(store_key)
        if holder is None:
            return LockStatus(key=store_key, is_locked=False, remaining_ttl=0.0)
        ttl = await self._store.time_to_live(store_key)
        return LockStatus(key=store_key, is_locked=True, remaining_ttl=ttl or 0.0)

    # ── Watchdog ─────────────────────────────────────────────────────

    def _start_watchdog(self, lease: Lease) -> None:
        task = asyncio.create_task(
            self._watchdog_loop(lease), name=f"lease-watchdog:{lease.key}"
        )
        self._watchdogs[lease.token] = task

    async def _stop_watchdog(self, lease: Lease) -> None:
        task = self._watchdogs.pop(lease.token, None)
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _watchdog_loop(self, lease: Lease) -> None:
        interval = lease.lease_duration / 3
        try:
            while True:
                await self._clock.sleep(interval)
                try:
                    renewed = await self.extend(lease)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Lease renewal failed for %s: %s", lease.key, exc)
                    renewed = False
                if not renewed:
                    logger.warning(
                        "Lease lost for %s; watchdog stopped renewing", lease.key
                    )
                    return
                logger.debug("Lease renewed: %s", lease.key)
        finally:
            self._watchdogs.pop(lease.token, None)

    def active_watchdogs(self) -> dict[str, str]:
        """Lease keys with a running watchdog (for monitoring and tests)."""
        return {token: task.get_name() for token, task in self._watchdogs.items()}

    async def close(self) -> None:
        """Stop every running watchdog without releasing the leases."""
        tasks = list(self._watchdogs.values())
        self._watchdogs.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
