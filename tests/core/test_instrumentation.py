from __future__ import annotations

from typing import Any

import pytest

from podsched_core import DedupGate, DelayQueue
from podsched_core.instrumentation import (
    HookRegistry,
    OperationRecord,
    get_hook_registry,
    set_hook_registry,
)


class RecordingHook:
    def __init__(self, name: str, order: list[str]) -> None:
        self._name = name
        self._order = order

    async def __call__(self, _record: OperationRecord, next_handler: Any) -> Any:
        self._order.append(f"before:{self._name}")
        result = await next_handler()
        self._order.append(f"after:{self._name}")
        return result


class CollectingHook:
    """Keeps every record once the wrapped call has finished."""

    def __init__(self) -> None:
        self.records: list[OperationRecord] = []

    async def __call__(self, record: OperationRecord, next_handler: Any) -> Any:
        try:
            return await next_handler()
        finally:
            self.records.append(record)


async def test_hooks_run_in_priority_order() -> None:
    order: list[str] = []
    registry = HookRegistry()
    registry.register(RecordingHook("inner", order), priority=0)
    registry.register(RecordingHook("outer", order), priority=-10)

    async def _handler() -> str:
        order.append("handler")
        return "ok"

    assert await registry.run("lock.acquire", "job", _handler) == "ok"
    assert order == [
        "before:outer",
        "before:inner",
        "handler",
        "after:inner",
        "after:outer",
    ]


async def test_patterns_match_operation_and_target() -> None:
    order: list[str] = []
    registry = HookRegistry()
    registry.register(RecordingHook("queue", order), operations=["delay_queue.*"])
    registry.register(
        RecordingHook("nightly", order), operations=["scheduler.job.execute.nightly-*"]
    )

    async def _handler() -> None:
        order.append("handler")

    await registry.run("dedup.claim", "job", _handler)
    await registry.run("scheduler.job.execute", "hourly", _handler)
    assert order == ["handler", "handler"]

    order.clear()
    await registry.run("delay_queue.publish", "mail", _handler)
    await registry.run("scheduler.job.execute", "nightly-report", _handler)
    assert order == [
        "before:queue",
        "handler",
        "after:queue",
        "before:nightly",
        "handler",
        "after:nightly",
    ]


async def test_record_carries_outcome_and_duration() -> None:
    hook = CollectingHook()
    registry = HookRegistry()
    registry.register(hook)

    async def _acquire() -> str | None:
        return None

    await registry.run(
        "lock.acquire",
        "job",
        _acquire,
        attributes={"ttl": 30.0},
        classify=lambda lease: "acquired" if lease else "busy",
    )

    (record,) = hook.records
    assert record.name == "lock.acquire.job"
    assert record.attributes == {"ttl": 30.0}
    assert record.outcome == "busy"
    assert record.duration is not None and record.duration >= 0


async def test_failed_operation_is_recorded_and_reraised() -> None:
    hook = CollectingHook()
    registry = HookRegistry()
    registry.register(hook)

    async def _boom() -> None:
        raise RuntimeError("store down")

    with pytest.raises(RuntimeError, match="store down"):
        await registry.run("dedup.claim", "report", _boom)

    assert hook.records[0].outcome == "failed"
    assert hook.records[0].duration is not None


async def test_components_report_their_outcomes(store: Any) -> None:
    hook = CollectingHook()
    registry = HookRegistry()
    registry.register(hook)
    set_hook_registry(registry)

    queue = DelayQueue(store)
    await queue.publish("mail", "m1", delay=0)
    await queue.consume("mail")
    await queue.consume("mail")
    gate = DedupGate(store, owner="pod-a")
    await gate.try_claim("report", 60)
    await gate.try_claim("report", 60)

    assert [(r.name, r.outcome) for r in hook.records] == [
        ("delay_queue.publish.mail", "ok"),
        ("delay_queue.consume.mail", "delivered"),
        ("delay_queue.consume.mail", "empty"),
        ("dedup.claim.report", "claimed"),
        ("dedup.claim.report", "duplicate"),
    ]
    assert hook.records[0].attributes == {"count": 1, "overwrite": True}


async def test_registry_is_per_context() -> None:
    registry = HookRegistry()
    set_hook_registry(registry)
    assert get_hook_registry() is registry

    registry.clear()
    assert get_hook_registry() is registry
