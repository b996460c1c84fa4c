"""In-memory adapters for testing and single-process deployments."""

from __future__ import annotations

from .store import InMemoryKeyValueStore

__all__ = ["InMemoryKeyValueStore"]
