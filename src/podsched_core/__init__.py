"""podsched-core — distributed coordination for replicated services.

Lease locks, dedup gates, delayed queues and a job scheduler written against
the :class:`~podsched_core.ports.IKeyValueStore` port. No Redis dependency;
use ``podsched_redis`` for the production store.
"""

from __future__ import annotations

# ── Adapters ────────────────────────────────────────────────────
from .adapters.memory import InMemoryKeyValueStore
from .correlation import generate_run_id, get_run_id, set_run_id

# ── Coordination ─────────────────────────────────────────────────
from .dedup import DedupGate
from .delay_queue import DelayedMessagePreview, DelayQueue, DelayQueueStatus
from .instrumentation import (
    HookRegistry,
    InstrumentationHook,
    OperationRecord,
    get_hook_registry,
    set_hook_registry,
)
from .locking import Lease, LeaseLock, LockStatus, compute_lease_duration

# ── Ports ────────────────────────────────────────────────────────
from .ports import IBackgroundWorker, IKeyValueStore, ITaskConfigurationProvider

# ── Primitives ───────────────────────────────────────────────────
from .primitives import (
    Clock,
    ConfigurationError,
    Duration,
    InfrastructureError,
    PodschedError,
    RateLimitExceededError,
    StoreUnavailableError,
    SystemClock,
    process_identity,
)
from .rate_limit import FixedWindowRateLimiter

# ── Scheduling ───────────────────────────────────────────────────
from .scheduling import JobDescriptor, JobKind, TaskScheduler, TickOutcome
from .settings import SchedulerSettings

__all__ = [
    # Adapters
    "InMemoryKeyValueStore",
    # Correlation
    "generate_run_id",
    "get_run_id",
    "set_run_id",
    # Coordination
    "DedupGate",
    "DelayQueue",
    "DelayQueueStatus",
    "DelayedMessagePreview",
    "FixedWindowRateLimiter",
    "Lease",
    "LeaseLock",
    "LockStatus",
    "compute_lease_duration",
    # Instrumentation
    "HookRegistry",
    "InstrumentationHook",
    "OperationRecord",
    "get_hook_registry",
    "set_hook_registry",
    # Ports
    "IBackgroundWorker",
    "IKeyValueStore",
    "ITaskConfigurationProvider",
    # Primitives
    "Clock",
    "SystemClock",
    "Duration",
    "PodschedError",
    "ConfigurationError",
    "InfrastructureError",
    "StoreUnavailableError",
    "RateLimitExceededError",
    "process_identity",
    # Scheduling
    "JobDescriptor",
    "JobKind",
    "TaskScheduler",
    "TickOutcome",
    "SchedulerSettings",
]
