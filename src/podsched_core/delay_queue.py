"""DelayQueue — time-ordered delayed delivery on an ordered set.

Each payload is a member of the ordered set named by the queue; its score is
the due time in milliseconds since the Unix epoch. Consumers pull and remove
due members in one atomic store operation, so concurrent consumers never
receive the same payload. Delivery is at-least-once from the producer's
point of view and at-most-once per consume: a consumer that crashes after
the pull loses those payloads.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, cast

from .instrumentation import get_hook_registry
from .primitives.clock import Clock, SystemClock, utc_from_millis
from .primitives.durations import Duration, to_millis, to_seconds
from .primitives.exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .ports.store import IKeyValueStore

logger = logging.getLogger("podsched.delay_queue")

DEFAULT_CONSUME_BATCH = 20
MAX_PREVIEW = 50


@dataclass(frozen=True)
class DelayQueueStatus:
    """Snapshot of a delay queue."""

    total: int
    ready: int
    pending: int
    next_fire_at: datetime | None


@dataclass(frozen=True)
class DelayedMessagePreview:
    """A queued payload as seen by :meth:`DelayQueue.preview`."""

    payload: str
    fire_at: datetime
    is_ready: bool
    remaining_seconds: float


class DelayQueue:
    """
    Delayed mailbox backed by an ordered set in the shared store.

    Example:
        ```python
        queue = DelayQueue(store)
        await queue.publish("orders:expire", order_id, delay=timedelta(minutes=15))

        # in a long-running job
        for order_id in await queue.consume("orders:expire", max_count=20):
            await expire_order(order_id)
        ```
    """

    def __init__(self, store: IKeyValueStore, *, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    def _now_ms(self) -> int:
        return to_millis(self._clock.time())

    def _due_at(self, delay: Duration) -> int:
        seconds = to_seconds(delay, name="delay")
        if seconds < 0:
            raise ConfigurationError(f"delay must not be negative, got {seconds}s")
        return self._now_ms() + to_millis(seconds)

    async def publish(
        self,
        queue: str,
        payload: str,
        delay: Duration,
        *,
        overwrite: bool = True,
    ) -> int:
        """
        Schedule ``payload`` for delivery after ``delay``.

        Args:
            queue: Queue (ordered set) name.
            payload: Message; unique within the queue.
            delay: Seconds or timedelta from now.
            overwrite: Re-delay an existing identical payload (True) or keep
                its original due time (False).

        Returns:
            The due time in epoch milliseconds.
        """
        due_at = self._due_at(delay)
        await self._add(queue, {payload: due_at}, overwrite)
        return due_at

    async def publish_batch(
        self,
        queue: str,
        payloads: Sequence[str],
        delay: Duration,
        *,
        overwrite: bool = True,
    ) -> int | None:
        """
        Schedule several payloads with one shared due time in one round trip.

        Conflicts are resolved per payload according to ``overwrite``.

        Returns:
            The shared due time in epoch milliseconds, or None for an empty batch.
        """
        if not payloads:
            return None
        due_at = self._due_at(delay)
        await self._add(queue, dict.fromkeys(payloads, due_at), overwrite)
        return due_at

    async def _add(self, queue: str, members: dict[str, int], overwrite: bool) -> None:
        registry = get_hook_registry()
        added = await registry.run(
            "delay_queue.publish",
            queue,
            lambda: self._store.add_scored(
                queue,
                {member: float(score) for member, score in members.items()},
                overwrite=overwrite,
            ),
            attributes={"count": len(members), "overwrite": overwrite},
        )
        logger.debug(
            "Published %d payload(s) to %s (%s new)", len(members), queue, added
        )

    async def consume(
        self, queue: str, max_count: int = DEFAULT_CONSUME_BATCH
    ) -> list[str]:
        """Atomically pull and remove up to ``max_count`` due payloads, oldest first."""
        if max_count <= 0:
            raise ConfigurationError(f"max_count must be positive, got {max_count}")
        now_ms = self._now_ms()
        registry = get_hook_registry()
        return cast(
            "list[str]",
            await registry.run(
                "delay_queue.consume",
                queue,
                lambda: self._store.range_by_score_and_remove(
                    queue, float(now_ms), max_count
                ),
                attributes={"max_count": max_count},
                classify=lambda items: "delivered" if items else "empty",
            ),
        )

    async def status(self, queue: str) -> DelayQueueStatus:
        """Count ready and pending payloads and find the next due time."""
        now_ms = self._now_ms()
        total = await self._store.count(queue)
        ready = await self._store.count_by_score(queue, -math.inf, float(now_ms))
        # Scores are whole milliseconds, so "> now" is ">= now + 1".
        nearest = await self._store.range_by_score(
            queue, float(now_ms + 1), math.inf, 0, 1
        )
        return DelayQueueStatus(
            total=total,
            ready=ready,
            pending=total - ready,
            next_fire_at=utc_from_millis(nearest[0][1]) if nearest else None,
        )

    async def remove(self, queue: str, payloads: Sequence[str]) -> int:
        """Cancel payloads that have not been delivered yet."""
        if not payloads:
            return 0
        return await self._store.remove_scored(queue, payloads)

    async def preview(
        self, queue: str, count: int = DEFAULT_CONSUME_BATCH
    ) -> list[DelayedMessagePreview]:
        """Peek at the earliest payloads without consuming them."""
        count = max(1, min(count, MAX_PREVIEW))
        now_ms = self._now_ms()
        members = await self._store.range_by_score(
            queue, -math.inf, math.inf, 0, count
        )
        return [
            DelayedMessagePreview(
                payload=member,
                fire_at=utc_from_millis(score),
                is_ready=score <= now_ms,
                remaining_seconds=max(0.0, (score - now_ms) / 1000.0),
            )
            for member, score in members
        ]
