"""Job descriptors and tick outcomes."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

JobAction = Callable[[], Union[Awaitable[Any], Any]]


class JobKind(str, Enum):
    """How a job's body is driven once its tick passes all gates."""

    RECURRING = "recurring"
    LONG_RUNNING = "long_running"


class TickOutcome(str, Enum):
    """Result of one poll tick."""

    GATED = "gated"  # outside allowed_hours
    SKIPPED = "skipped"  # dedup/lock contention or store failure
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass(frozen=True)
class JobDescriptor:
    """A registered job. Immutable; exactly one loop runs per descriptor."""

    name: str
    kind: JobKind
    action: JobAction
    interval: float
    lease_duration: float
    use_lock: bool = True
    allowed_hours: frozenset[int] | None = None
    dedup_window: float | None = None
    processing_interval: float = 0.0
    run_duration: float = 0.0

    @property
    def lock_name(self) -> str:
        return f"task:{self.name}"

    @property
    def dedup_name(self) -> str:
        return f"task:{self.name}"

    def allows_hour(self, hour: int) -> bool:
        return self.allowed_hours is None or hour in self.allowed_hours
