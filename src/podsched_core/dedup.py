"""DedupGate — at most one successful claim per name and window, across replicas."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

from .instrumentation import get_hook_registry
from .primitives.durations import Duration, positive_seconds
from .primitives.identity import process_identity

if TYPE_CHECKING:
    from .ports.store import IKeyValueStore

logger = logging.getLogger("podsched.dedup")


class DedupGate:
    """Deduplicate executions with a self-expiring marker key.

    The first replica to write ``{prefix}:{name}`` within the window wins;
    every other claim in that window returns False. There is no release:
    expiry is the only way a marker goes away, which is what lets the gate
    outlive lock renewals and replicas that never held the lock.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        *,
        prefix: str = "dedup",
        owner: str | None = None,
    ) -> None:
        """Configure the gate.

        Args:
            store: Shared key-value store.
            prefix: Key prefix for markers.
            owner: Value written into the marker (defaults to the process identity).
        """
        self._store = store
        self._prefix = prefix
        self._owner = owner or process_identity()

    def marker_key(self, name: str) -> str:
        return f"{self._prefix}:{name}"

    async def try_claim(self, name: str, window: Duration) -> bool:
        """Return True iff this call created the marker for ``name``."""
        ttl = positive_seconds(window, name="dedup window")
        registry = get_hook_registry()
        claimed = cast(
            "bool",
            await registry.run(
                "dedup.claim",
                name,
                lambda: self._store.set_if_absent(
                    self.marker_key(name), self._owner, ttl
                ),
                attributes={"window": ttl},
                classify=lambda claimed: "claimed" if claimed else "duplicate",
            ),
        )
        if not claimed:
            logger.debug("Dedup marker already present: %s", self.marker_key(name))
        return claimed

    async def holder(self, name: str) -> str | None:
        """Owner tag of the current marker, or None if the window is open."""
        return await self._store.get(self.marker_key(name))
