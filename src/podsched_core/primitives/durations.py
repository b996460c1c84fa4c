"""Duration normalisation shared by the coordination components."""

from __future__ import annotations

from datetime import timedelta
from typing import Union

from .exceptions import ConfigurationError

Duration = Union[float, int, timedelta]


def to_seconds(value: Duration, *, name: str = "duration") -> float:
    """Convert seconds or a ``timedelta`` into float seconds.

    Raises:
        ConfigurationError: If ``value`` is not a number or timedelta.
    """
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(
            f"{name} must be seconds or a timedelta, got {type(value).__name__}"
        )
    return float(value)


def positive_seconds(value: Duration, *, name: str = "duration") -> float:
    """Like :func:`to_seconds` but rejects zero and negative durations."""
    seconds = to_seconds(value, name=name)
    if seconds <= 0:
        raise ConfigurationError(f"{name} must be positive, got {seconds}s")
    return seconds


def to_millis(seconds: float) -> int:
    return int(round(seconds * 1000))
