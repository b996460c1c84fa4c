"""IKeyValueStore — protocol for the shared store every replica coordinates through.

Correctness guidance:
- Every compare-and-* primitive and ``range_by_score_and_remove`` MUST run as a
  single atomic operation against the store (a server-side script for Redis).
  A read followed by a write in a second round trip lets two replicas both
  observe the same state and both act on it.
- TTLs are float seconds. Adapters convert to milliseconds where the backend
  supports it so that sub-second leases behave as configured.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


@runtime_checkable
class IKeyValueStore(Protocol):
    """
    Key-value store protocol used by locks, dedup gates and delay queues.

    Implementations can use Redis (production) or an in-process dictionary
    for testing and single-replica deployments.

    Example:
        ```python
        store = RedisKeyValueStore.from_url("redis://localhost:6379/0")
        if await store.set_if_absent("dedup:cleanup", "pod-1", ttl=3600):
            ...
        ```
    """

    # ── Plain keys ───────────────────────────────────────────────────

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        """
        Write ``value`` under ``key`` only when the key does not exist.

        Args:
            key: Key to create.
            value: Value to store.
            ttl: Time-to-live in seconds.

        Returns:
            True if this call created the key, False if it already existed.
        """
        ...

    async def get(self, key: str) -> str | None:
        """Return the value under ``key`` or None when missing/expired."""
        ...

    async def expire(self, key: str, ttl: float) -> bool:
        """Set a new TTL on an existing key. Returns False if the key is missing."""
        ...

    async def time_to_live(self, key: str) -> float | None:
        """Remaining TTL in seconds, or None if the key is missing or has no TTL."""
        ...

    async def increment(self, key: str, ttl: float | None = None) -> int:
        """
        Atomically increment an integer counter, creating it at 1.

        When ``ttl`` is given and this call creates the counter, the TTL is
        set in the same atomic step, so a counter never exists without one.
        """
        ...

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """
        Delete ``key`` only if its value equals ``expected`` (atomic).

        Returns:
            True if the key was deleted, False otherwise.
        """
        ...

    async def compare_and_extend(self, key: str, expected: str, ttl: float) -> bool:
        """
        Reset the TTL of ``key`` only if its value equals ``expected`` (atomic).

        Returns:
            True if the TTL was extended, False if the key vanished or
            holds another value.
        """
        ...

    # ── Scored (ordered) sets ────────────────────────────────────────

    async def add_scored(
        self,
        name: str,
        members: Mapping[str, float],
        *,
        overwrite: bool = True,
    ) -> int:
        """
        Add members with scores to the ordered set ``name`` in one round trip.

        Args:
            name: Ordered set key.
            members: Member -> score mapping.
            overwrite: When True existing members get the new score; when
                False existing members are left untouched.

        Returns:
            Number of newly added members.
        """
        ...

    async def range_by_score_and_remove(
        self, name: str, max_score: float, limit: int
    ) -> list[str]:
        """
        Atomically select up to ``limit`` members with ``score <= max_score``
        in ascending score order and remove exactly those members.

        Two concurrent callers can never receive the same member.
        """
        ...

    async def count(self, name: str) -> int:
        """Number of members in the ordered set."""
        ...

    async def count_by_score(
        self, name: str, min_score: float, max_score: float
    ) -> int:
        """Number of members with ``min_score <= score <= max_score``."""
        ...

    async def range_by_score(
        self,
        name: str,
        min_score: float,
        max_score: float,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[tuple[str, float]]:
        """Members with scores in ``[min_score, max_score]``, ascending, with scores."""
        ...

    async def remove_scored(self, name: str, members: Sequence[str]) -> int:
        """Remove members from the ordered set. Returns how many were removed."""
        ...

    # ── Lifecycle ────────────────────────────────────────────────────

    async def ping(self) -> bool:
        """Return True if the store is reachable."""
        ...

    async def close(self) -> None:
        """Release connections held by the adapter."""
        ...
