"""IBackgroundWorker — lifecycle of a process-wide background service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..primitives.durations import Duration


@runtime_checkable
class IBackgroundWorker(Protocol):
    """
    Something the host application starts once and stops on shutdown.

    ``stop`` takes an optional grace period: work still in flight after it
    is abandoned, never torn mid-call. Both calls are idempotent.

    Implemented by: ``TaskScheduler``.
    """

    @property
    def is_running(self) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self, grace_period: Duration | None = None) -> None: ...
