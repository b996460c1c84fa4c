"""Run identifiers — tie together the log lines and hooks of one job execution."""

from __future__ import annotations

import uuid
from contextvars import ContextVar

_run_id: ContextVar[str | None] = ContextVar("podsched_run_id", default=None)


def get_run_id() -> str | None:
    """Get current run ID from context."""
    return _run_id.get()


def set_run_id(run_id: str | None) -> None:
    """Set run ID in context."""
    _run_id.set(run_id)


def generate_run_id() -> str:
    """Generate a new run ID."""
    return uuid.uuid4().hex[:12]
