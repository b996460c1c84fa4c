"""Instrumentation hooks around coordination operations.

Every lock, dedup, delay-queue and job-execution call is described by an
:class:`OperationRecord`. Hooks wrap the call: they can open a span before
awaiting ``next_handler`` and read the record's ``outcome`` and ``duration``
after it, which is all a tracing or metrics exporter needs.

Operations and their outcomes:

- ``lock.acquire`` (target: lock key): ``acquired`` / ``busy``
- ``lock.release`` (target: store key): ``released`` / ``lost``
- ``dedup.claim`` (target: dedup name): ``claimed`` / ``duplicate``
- ``delay_queue.publish`` (target: queue): ``ok``
- ``delay_queue.consume`` (target: queue): ``delivered`` / ``empty``
- ``scheduler.job.execute`` (target: job name): ``executed``

Any operation that raises ends with outcome ``failed``.
"""

from __future__ import annotations

import fnmatch
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

OUTCOME_OK = "ok"
OUTCOME_FAILED = "failed"


@dataclass
class OperationRecord:
    """One coordination call as seen by hooks.

    ``outcome`` and ``duration`` stay None until the wrapped call returns
    or raises.
    """

    operation: str
    target: str
    attributes: dict[str, Any] = field(default_factory=dict)
    outcome: str | None = None
    duration: float | None = None

    @property
    def name(self) -> str:
        """``<operation>.<target>``, the string hook patterns match against."""
        return f"{self.operation}.{self.target}"


@runtime_checkable
class InstrumentationHook(Protocol):
    """Wraps a coordination call; must await ``next_handler`` exactly once."""

    async def __call__(
        self,
        record: OperationRecord,
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any: ...


@dataclass(frozen=True)
class _Registration:
    hook: InstrumentationHook
    priority: int
    patterns: tuple[str, ...]

    def applies_to(self, name: str) -> bool:
        if not self.patterns:
            return True
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.patterns)


class HookRegistry:
    """Hooks applied to coordination operations, lowest priority outermost.

    Patterns given to :meth:`register` are globs over
    :attr:`OperationRecord.name`, e.g. ``"lock.*"`` or
    ``"scheduler.job.execute.nightly-*"``.
    """

    def __init__(self) -> None:
        self._registrations: list[_Registration] = []

    def register(
        self,
        hook: InstrumentationHook,
        *,
        operations: list[str] | None = None,
        priority: int = 0,
    ) -> None:
        self._registrations.append(
            _Registration(hook, priority, tuple(operations or ()))
        )
        self._registrations.sort(key=lambda r: r.priority)

    def clear(self) -> None:
        self._registrations.clear()

    async def run(
        self,
        operation: str,
        target: str,
        handler: Callable[[], Awaitable[Any]],
        *,
        attributes: dict[str, Any] | None = None,
        classify: Callable[[Any], str] | None = None,
    ) -> Any:
        """Run ``handler`` through every matching hook.

        Args:
            operation: Operation kind, e.g. ``lock.acquire``.
            target: The lock key, queue or job the call acts on.
            handler: The actual store or job call.
            attributes: Extra fields exposed on the record.
            classify: Maps the handler's result to an outcome (default ``ok``).
        """
        record = OperationRecord(operation, target, dict(attributes or {}))
        hooks = [r.hook for r in self._registrations if r.applies_to(record.name)]

        async def measured() -> Any:
            started = time.monotonic()
            try:
                result = await handler()
            except BaseException:
                record.outcome = OUTCOME_FAILED
                raise
            finally:
                record.duration = time.monotonic() - started
            record.outcome = classify(result) if classify else OUTCOME_OK
            return result

        async def pipeline(index: int) -> Any:
            if index == len(hooks):
                return await measured()
            return await hooks[index](record, lambda: pipeline(index + 1))

        return await pipeline(0)


_hook_registry_var: ContextVar[HookRegistry | None] = ContextVar(
    "podsched_hook_registry", default=None
)


def get_hook_registry() -> HookRegistry:
    """Registry for the current context, created empty on first use."""
    registry = _hook_registry_var.get()
    if registry is None:
        registry = HookRegistry()
        _hook_registry_var.set(registry)
    return registry


def set_hook_registry(registry: HookRegistry) -> None:
    _hook_registry_var.set(registry)
