"""Scheduler and coordination settings.

All fields can be set via ``PODSCHED_*`` environment variables (e.g.
``PODSCHED_SHUTDOWN_GRACE_PERIOD=20``) or passed explicitly.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Validated configuration for :class:`~podsched_core.scheduling.TaskScheduler`."""

    model_config = SettingsConfigDict(
        env_prefix="PODSCHED_",
        extra="ignore",
        frozen=True,
    )

    # ── Store ────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0")
    lock_prefix: str = Field(default="lock", min_length=1)
    dedup_prefix: str = Field(default="dedup", min_length=1)

    # ── Loop ─────────────────────────────────────────────────────
    shutdown_grace_period: float = Field(default=10.0, ge=0)
    max_initial_jitter: float = Field(
        default=31.0,
        ge=0,
        description="Exclusive upper bound of the per-job start delay (seconds)",
    )

    # ── Leases ───────────────────────────────────────────────────
    lease_factor: float = Field(default=1.5, gt=0)
    min_lease_duration: float = Field(default=30.0, gt=0)
    max_lease_duration: float = Field(default=300.0, gt=0)

    # ── Long-running defaults ────────────────────────────────────
    default_processing_interval: float = Field(default=0.05, ge=0)
    default_run_duration: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def _check_lease_bounds(self) -> SchedulerSettings:
        if self.min_lease_duration > self.max_lease_duration:
            raise ValueError(
                "min_lease_duration must not exceed max_lease_duration "
                f"({self.min_lease_duration} > {self.max_lease_duration})"
            )
        return self
