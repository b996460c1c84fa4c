"""ITaskConfigurationProvider — registration callback for scheduled jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..scheduling.scheduler import TaskScheduler


@runtime_checkable
class ITaskConfigurationProvider(Protocol):
    """Application-side collaborator that enumerates the jobs to run.

    The scheduler has no compile-time knowledge of what jobs exist; it calls
    :meth:`configure_tasks` once at start and the provider registers each
    job through the scheduler's public API.

    Example::

        class AppTasks:
            def configure_tasks(self, scheduler: TaskScheduler) -> None:
                scheduler.add_recurring_task(
                    cleanup.clear_logs,
                    timedelta(minutes=21),
                    allowed_hours=[2, 3],
                    dedup_window=timedelta(hours=12),
                )
    """

    def configure_tasks(self, scheduler: TaskScheduler) -> None:
        """Register jobs on ``scheduler``."""
        ...
