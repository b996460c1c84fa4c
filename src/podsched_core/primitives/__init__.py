"""Primitives — exceptions, durations, clocks and process identity."""

from __future__ import annotations

from .clock import Clock, SystemClock, interruptible_sleep, utc_from_millis
from .durations import Duration, positive_seconds, to_millis, to_seconds
from .exceptions import (
    ConfigurationError,
    InfrastructureError,
    PodschedError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from .identity import generate_token, process_identity, stable_hash

__all__ = [
    "Clock",
    "SystemClock",
    "interruptible_sleep",
    "utc_from_millis",
    "Duration",
    "positive_seconds",
    "to_millis",
    "to_seconds",
    "PodschedError",
    "ConfigurationError",
    "InfrastructureError",
    "StoreUnavailableError",
    "RateLimitExceededError",
    "generate_token",
    "process_identity",
    "stable_hash",
]
