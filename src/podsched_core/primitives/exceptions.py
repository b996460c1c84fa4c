"""Exception hierarchy for podsched-core."""

from __future__ import annotations


class PodschedError(Exception):
    """Root exception for the entire podsched toolkit."""


class ConfigurationError(PodschedError, ValueError):
    """Raised when a component or job is registered with invalid settings.

    Usage: the only error class a caller of the scheduler registration API
    is expected to handle. Everything raised inside a running job loop is
    logged and contained instead.
    """


class InfrastructureError(PodschedError):
    """Base class for all infrastructure-related errors."""


class StoreUnavailableError(InfrastructureError):
    """Raised when the shared key-value store cannot be reached."""


class RateLimitExceededError(PodschedError):
    """Raised when a fixed-window rate limit has been exhausted."""

    def __init__(self, key: str, limit: int, window: float) -> None:
        self.key = key
        self.limit = limit
        self.window = window
        super().__init__(
            f"Rate limit exceeded for {key!r}: more than {limit} hits in {window}s"
        )
