"""Job scheduling — per-replica loops gated by hours, dedup windows and leases.

Every replica registers the same jobs and runs the same loops. The shared
store decides, tick by tick, which replica actually executes a body:

* ``allowed_hours`` restricts ticks to local hours of the day.
* ``dedup_window`` allows at most one execution per window cluster-wide.
* ``use_lock`` serialises executions behind a ``task:{name}`` lease.
"""

from .descriptor import JobAction, JobDescriptor, JobKind, TickOutcome
from .scheduler import TaskScheduler

__all__ = ["JobAction", "JobDescriptor", "JobKind", "TickOutcome", "TaskScheduler"]
