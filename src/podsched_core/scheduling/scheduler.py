"""TaskScheduler — per-replica job loops coordinated through the shared store."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from ..correlation import generate_run_id, get_run_id, set_run_id
from ..dedup import DedupGate
from ..instrumentation import get_hook_registry
from ..locking import LeaseLock, compute_lease_duration
from ..ports.background_worker import IBackgroundWorker
from ..primitives.clock import Clock, SystemClock, interruptible_sleep
from ..primitives.durations import Duration, positive_seconds, to_seconds
from ..primitives.exceptions import ConfigurationError
from ..primitives.identity import process_identity, stable_hash
from ..settings import SchedulerSettings
from .descriptor import JobAction, JobDescriptor, JobKind, TickOutcome

if TYPE_CHECKING:
    from ..locking import Lease
    from ..ports.store import IKeyValueStore
    from ..ports.task_provider import ITaskConfigurationProvider

logger = logging.getLogger("podsched.scheduler")


def _default_name(action: JobAction) -> str:
    target = getattr(action, "func", action)  # functools.partial
    name = getattr(target, "__qualname__", None)
    if not name:
        raise ConfigurationError(
            f"cannot derive a job name from {action!r}; pass name= explicitly"
        )
    return str(name)


def _is_async(action: JobAction) -> bool:
    # Callable objects with an ``async def __call__`` count as async too.
    return inspect.iscoroutinefunction(action) or inspect.iscoroutinefunction(
        getattr(action, "__call__", None)
    )


def _validate_hours(hours: Iterable[int] | None) -> frozenset[int] | None:
    if hours is None:
        return None
    result = frozenset(hours)
    if not result:
        raise ConfigurationError("allowed_hours must not be empty")
    bad = sorted(h for h in result if not isinstance(h, int) or not 0 <= h <= 23)
    if bad:
        raise ConfigurationError(f"allowed_hours must be within 0..23, got {bad}")
    return result


class TaskScheduler(IBackgroundWorker):
    """
    Runs every registered job in its own loop on every replica.

    Each loop sleeps a per-replica jitter, then ticks on the job's interval.
    A tick passes the hour gate, then the dedup gate (when ``dedup_window`` is
    set), then the lease lock (when ``use_lock`` is set), and only then runs
    the job body. Any failed gate skips the tick silently.

    Without a store, or when the store does not answer at :meth:`start`, the
    scheduler runs in degraded mode: both lock and dedup are disabled and
    every replica runs every job.

    Example:
        ```python
        scheduler = TaskScheduler(RedisKeyValueStore.from_url(url))
        scheduler.add_recurring_task(
            cleanup.clear_logs,
            timedelta(minutes=21),
            allowed_hours=[2, 3],
            dedup_window=timedelta(hours=12),
        )
        scheduler.add_long_running_task(outbox.drain, interval=timedelta(minutes=1))
        await scheduler.start()
        ...
        await scheduler.stop()
        ```

    Implements ``IBackgroundWorker`` (``start`` / ``stop``).
    """

    def __init__(
        self,
        store: IKeyValueStore | None = None,
        *,
        settings: SchedulerSettings | None = None,
        clock: Clock | None = None,
        providers: Iterable[ITaskConfigurationProvider] = (),
        process_id: str | None = None,
    ) -> None:
        """
        Initialize TaskScheduler.

        Args:
            store: Shared key-value store; None runs in degraded mode.
            settings: Scheduler settings (defaults read ``PODSCHED_*`` env vars).
            clock: Time source for jitter, intervals and hour gating.
            providers: Called at :meth:`start` when no job has been registered.
            process_id: Replica identity used for jitter and dedup ownership.
        """
        self._store = store
        self._settings = settings or SchedulerSettings()
        self._clock = clock or SystemClock()
        self._providers = list(providers)
        self._process_id = process_id or process_identity()

        self._jobs: dict[str, JobDescriptor] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._stopping = asyncio.Event()
        self._started = False
        self._locking_enabled = store is not None
        self._abandoned: dict[str, asyncio.Future[Any]] = {}
        self._deferred: set[asyncio.Task[None]] = set()

        self._lock: LeaseLock | None = None
        self._dedup: DedupGate | None = None
        if store is not None:
            self._lock = LeaseLock(
                store, prefix=self._settings.lock_prefix, clock=self._clock
            )
            self._dedup = DedupGate(
                store, prefix=self._settings.dedup_prefix, owner=self._process_id
            )

    # ── Registration ─────────────────────────────────────────────────

    @property
    def jobs(self) -> dict[str, JobDescriptor]:
        return dict(self._jobs)

    @property
    def locking_enabled(self) -> bool:
        return self._locking_enabled

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopping.is_set()

    def add_recurring_task(
        self,
        action: JobAction,
        interval: Duration,
        *,
        allowed_hours: Iterable[int] | None = None,
        dedup_window: Duration | None = None,
        use_lock: bool = True,
        name: str | None = None,
    ) -> JobDescriptor:
        """
        Register a job whose body runs once per successful tick.

        Args:
            action: Sync or async zero-argument callable.
            interval: Tick period.
            allowed_hours: Local hours (0-23) in which ticks may run.
            dedup_window: At most one execution per window across all replicas.
            use_lock: Take the ``task:{name}`` lease around the body.
            name: Job name; defaults to the action's qualified name.

        Raises:
            ConfigurationError: On invalid arguments, a duplicate name, or
                registration after :meth:`start`.
        """
        seconds = positive_seconds(interval, name="interval")
        return self._register(
            JobDescriptor(
                name=name or _default_name(action),
                kind=JobKind.RECURRING,
                action=action,
                interval=seconds,
                lease_duration=self._lease_for(seconds),
                use_lock=use_lock,
                allowed_hours=_validate_hours(allowed_hours),
                dedup_window=(
                    None
                    if dedup_window is None
                    else positive_seconds(dedup_window, name="dedup_window")
                ),
            )
        )

    def add_long_running_task(
        self,
        action: JobAction,
        interval: Duration,
        *,
        processing_interval: Duration | None = None,
        run_duration: Duration | None = None,
        use_lock: bool = True,
        name: str | None = None,
    ) -> JobDescriptor:
        """
        Register a job whose body is called repeatedly for ``run_duration``.

        Once a tick wins the lease, the body is invoked every
        ``processing_interval`` until ``run_duration`` elapses or the
        scheduler stops; the lease is held for the whole window.

        Raises:
            ConfigurationError: On invalid arguments, a duplicate name, or
                registration after :meth:`start`.
        """
        seconds = positive_seconds(interval, name="interval")
        window = positive_seconds(
            self._settings.default_run_duration
            if run_duration is None
            else run_duration,
            name="run_duration",
        )
        pause = to_seconds(
            self._settings.default_processing_interval
            if processing_interval is None
            else processing_interval,
            name="processing_interval",
        )
        if pause < 0:
            raise ConfigurationError(
                f"processing_interval must not be negative, got {pause}s"
            )
        return self._register(
            JobDescriptor(
                name=name or _default_name(action),
                kind=JobKind.LONG_RUNNING,
                action=action,
                interval=seconds,
                lease_duration=self._lease_for(window),
                use_lock=use_lock,
                processing_interval=pause,
                run_duration=window,
            )
        )

    def configure(self, provider: ITaskConfigurationProvider) -> None:
        """Let ``provider`` register its jobs now."""
        provider.configure_tasks(self)

    def _lease_for(self, expected: float) -> float:
        return compute_lease_duration(
            expected,
            factor=self._settings.lease_factor,
            minimum=self._settings.min_lease_duration,
            maximum=self._settings.max_lease_duration,
        )

    def _register(self, job: JobDescriptor) -> JobDescriptor:
        if self._started:
            raise ConfigurationError(
                f"cannot register {job.name!r}: scheduler already started"
            )
        if job.name in self._jobs:
            raise ConfigurationError(f"job {job.name!r} is already registered")
        self._jobs[job.name] = job
        logger.debug("Job registered: %s (%s)", job.name, job.kind.value)
        return job

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        if not self._jobs:
            for provider in self._providers:
                try:
                    self.configure(provider)
                except Exception:  # noqa: BLE001
                    logger.exception(
                        "Task provider %s failed to configure tasks",
                        type(provider).__name__,
                    )
        await self._check_store()

        self._started = True
        self._stopping.clear()
        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(
                self._run_loop(job), name=f"podsched:{job.name}"
            )
            logger.info(
                "Task scheduled: %s (%s, interval=%.1fs, lease=%.1fs)",
                job.name,
                job.kind.value,
                job.interval,
                job.lease_duration,
            )
        logger.info(
            "TaskScheduler started with %d job(s) (locking=%s, process=%s)",
            len(self._jobs),
            self._locking_enabled,
            self._process_id,
        )

    async def _check_store(self) -> None:
        if self._store is None:
            logger.warning(
                "No shared store configured; distributed locking and dedup are "
                "disabled and every replica will run every job"
            )
            self._locking_enabled = False
            return
        try:
            reachable = await self._store.ping()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Shared store ping failed: %s", exc)
            reachable = False
        self._locking_enabled = reachable
        if not reachable:
            logger.warning(
                "Shared store unavailable; distributed locking and dedup are "
                "disabled and every replica will run every job"
            )

    async def stop(self, grace_period: Duration | None = None) -> None:
        """
        Signal every loop to stop and wait up to ``grace_period`` for them.

        An in-flight job body is never interrupted by the stop signal; a
        long-running window ends at its next pause. Loops still busy when
        the grace period runs out are logged and cancelled; a body still
        running at that point keeps its lease (and the lease watchdog) until
        it returns, so no other replica can start the same job meanwhile.
        """
        if not self._started:
            return
        grace = (
            self._settings.shutdown_grace_period
            if grace_period is None
            else to_seconds(grace_period, name="grace_period")
        )
        self._stopping.set()
        tasks = list(self._tasks.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=max(0.0, grace))
            if pending:
                logger.warning(
                    "Task shutdown timed out after %.1fs; abandoning %d job(s): %s",
                    grace,
                    len(pending),
                    ", ".join(sorted(t.get_name() for t in pending)),
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        if self._deferred:
            # Their leases stay renewed until the bodies return.
            logger.warning(
                "%d abandoned job body(ies) still running; their leases are "
                "kept until they finish",
                len(self._deferred),
            )
        elif self._lock is not None:
            await self._lock.close()
        self._tasks.clear()
        self._started = False
        logger.info("TaskScheduler stopped")

    # ── Loop ─────────────────────────────────────────────────────────

    def initial_delay(self, name: str) -> float:
        """Deterministic per-replica start delay in ``[0, max_initial_jitter)``."""
        bound_ms = int(self._settings.max_initial_jitter * 1000)
        if bound_ms <= 0:
            return 0.0
        return (stable_hash(f"{name}{self._process_id}") % bound_ms) / 1000.0

    async def _run_loop(self, job: JobDescriptor) -> None:
        delay = self.initial_delay(job.name)
        logger.debug("Task %s starts in %.3fs", job.name, delay)
        if not await interruptible_sleep(self._clock, delay, self._stopping):
            logger.info("Task %s stopped during initial delay", job.name)
            return

        next_tick = self._clock.monotonic() + job.interval
        while await interruptible_sleep(
            self._clock, next_tick - self._clock.monotonic(), self._stopping
        ):
            await self.run_once(job.name)
            # Ticks missed while the body ran are coalesced, not replayed.
            now = self._clock.monotonic()
            next_tick += job.interval
            if next_tick <= now:
                next_tick = now + job.interval
        logger.info("Task %s loop stopped", job.name)

    async def run_once(self, name: str) -> TickOutcome:
        """Run one tick of job ``name`` through all gates (also used by tests)."""
        job = self._jobs.get(name)
        if job is None:
            raise ConfigurationError(f"unknown job {name!r}")
        if not job.allows_hour(self._clock.now().hour):
            self._log_outcome(job, TickOutcome.GATED, 0.0)
            return TickOutcome.GATED

        lease: Lease | None = None
        if self._locking_enabled:
            try:
                if not await self._passes_dedup(job):
                    self._log_outcome(job, TickOutcome.SKIPPED, 0.0)
                    return TickOutcome.SKIPPED
                if job.use_lock:
                    lease = await self._acquire(job)
                    if lease is None:
                        self._log_outcome(job, TickOutcome.SKIPPED, 0.0)
                        return TickOutcome.SKIPPED
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Coordination failed for task %s, skipping tick: %s", job.name, exc
                )
                self._log_outcome(job, TickOutcome.SKIPPED, 0.0)
                return TickOutcome.SKIPPED

        try:
            return await self._execute(job)
        finally:
            body = self._abandoned.pop(job.name, None)
            if body is not None:
                # The lease must outlive the body, not the cancelled tick.
                finisher = asyncio.create_task(
                    self._finish_abandoned(job, body, lease),
                    name=f"podsched-finish:{job.name}",
                )
                self._deferred.add(finisher)
                finisher.add_done_callback(self._deferred.discard)
            elif lease is not None:
                await self._release(lease)

    async def _passes_dedup(self, job: JobDescriptor) -> bool:
        if job.dedup_window is None or self._dedup is None:
            return True
        return await self._dedup.try_claim(job.dedup_name, job.dedup_window)

    async def _acquire(self, job: JobDescriptor) -> Lease | None:
        assert self._lock is not None
        return await self._lock.try_acquire(
            job.lock_name, job.lease_duration, watchdog=True
        )

    async def _release(self, lease: Lease) -> None:
        assert self._lock is not None
        try:
            await self._lock.release(lease)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Failed to release %s: %s (will auto-expire)", lease.key, exc
            )

    async def _finish_abandoned(
        self,
        job: JobDescriptor,
        body: asyncio.Future[Any],
        lease: Lease | None,
    ) -> None:
        try:
            await body
        except Exception:  # noqa: BLE001
            logger.exception("Task %s failed after shutdown", job.name)
        finally:
            if lease is not None:
                await self._release(lease)
            logger.info("Abandoned task %s finished", job.name)

    # ── Execution ────────────────────────────────────────────────────

    async def _execute(self, job: JobDescriptor) -> TickOutcome:
        set_run_id(generate_run_id())
        started = self._clock.monotonic()
        if job.kind is JobKind.LONG_RUNNING:
            outcome = await self._run_window(job)
        else:
            outcome = (
                TickOutcome.EXECUTED if await self._invoke(job) else TickOutcome.FAILED
            )
        self._log_outcome(job, outcome, self._clock.monotonic() - started)
        return outcome

    async def _run_window(self, job: JobDescriptor) -> TickOutcome:
        stop_at = self._clock.monotonic() + job.run_duration
        processed = failed = 0
        while self._clock.monotonic() < stop_at and not self._stopping.is_set():
            if await self._invoke(job):
                processed += 1
            else:
                failed += 1
            if job.processing_interval <= 0:
                await asyncio.sleep(0)
            elif not await interruptible_sleep(
                self._clock, job.processing_interval, self._stopping
            ):
                break
        if self._stopping.is_set():
            logger.info(
                "Long-running task %s interrupted by shutdown after %d run(s)",
                job.name,
                processed + failed,
            )
        logger.debug(
            "Long-running task %s window done (ok=%d, failed=%d)",
            job.name,
            processed,
            failed,
        )
        return TickOutcome.FAILED if failed and not processed else TickOutcome.EXECUTED

    async def _invoke(self, job: JobDescriptor) -> bool:
        registry = get_hook_registry()
        body = asyncio.ensure_future(
            registry.run(
                "scheduler.job.execute",
                job.name,
                lambda: self._call(job.action),
                attributes={"kind": job.kind.value, "run_id": get_run_id()},
                classify=lambda _: TickOutcome.EXECUTED.value,
            )
        )
        try:
            # Cancelling the loop never tears a body mid-run.
            await asyncio.shield(body)
        except asyncio.CancelledError:
            if not body.done():
                self._abandoned[job.name] = body
            raise
        except Exception:  # noqa: BLE001
            logger.exception(
                "Task %s failed",
                job.name,
                extra={"job": job.name, "run_id": get_run_id()},
            )
            return False
        return True

    @staticmethod
    async def _call(action: JobAction) -> Any:
        if _is_async(action):
            return await action()
        result = await asyncio.to_thread(action)
        if inspect.isawaitable(result):
            return await result
        return result

    def _log_outcome(
        self, job: JobDescriptor, outcome: TickOutcome, duration: float
    ) -> None:
        extra = {
            "job": job.name,
            "outcome": outcome.value,
            "duration": duration,
            "run_id": get_run_id(),
        }
        if outcome is TickOutcome.EXECUTED:
            logger.info("Task %s executed in %.3fs", job.name, duration, extra=extra)
        elif outcome is TickOutcome.FAILED:
            logger.warning(
                "Task %s failed after %.3fs", job.name, duration, extra=extra
            )
        else:
            logger.debug("Task %s %s", job.name, outcome.value, extra=extra)
