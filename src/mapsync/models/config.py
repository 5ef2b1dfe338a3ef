"""Engine configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from mapsync.models.enums import ResolutionMethod


class RetryPolicy(BaseModel):
    """Configures retry behaviour for persistence writes."""

    max_retries: int = Field(default=3, ge=0)
    base_delay_seconds: float = Field(default=0.5, gt=0.0)
    max_delay_seconds: float = Field(default=30.0, gt=0.0)
    exponential_base: float = Field(default=2.0, gt=0.0)

    def delay_for(self, attempt: int) -> float:
        """Pause after the *attempt*-th failure (1-based), capped at the max."""
        delay = self.base_delay_seconds * self.exponential_base ** (attempt - 1)
        return min(delay, self.max_delay_seconds)


class EngineConfig(BaseModel):
    """Tunables for the collaboration engine.

    Attributes:
        coalesce_interval_seconds: Window within which a new cursor frame
            from the same user replaces the queued one.
        max_queue_size: Hard cap on a delivery queue's length.
        trim_to: Number of most recent entries kept once the cap is
            exceeded.
        ghost_timeout_seconds: How long a participant that left is kept
            so it can reconnect with its queue intact.
        session_retention_seconds: How long a session with no active
            participants survives before the reaper removes it.
        reap_interval_seconds: Period of the background reaper.
        default_max_participants: Capacity used when a session config
            does not set one.
        default_resolution_method: Policy applied automatically to
            conflicting writes.
        system_user_id: Author recorded on automatic resolutions.
        breaker_failure_threshold: Consecutive transport failures before
            delivery to one participant is paused.
        breaker_recovery_seconds: Pause length before a probe delivery.
        delivery_retry_seconds: How soon the delivery worker retries
            updates left queued by a failed send.
    """

    coalesce_interval_seconds: float = Field(default=0.1, ge=0.0)
    max_queue_size: int = Field(default=100, ge=1)
    trim_to: int = Field(default=50, ge=1)
    ghost_timeout_seconds: float = Field(default=60.0, ge=0.0)
    session_retention_seconds: float = Field(default=300.0, ge=0.0)
    reap_interval_seconds: float = Field(default=30.0, gt=0.0)
    default_max_participants: int = Field(default=50, ge=1)
    default_resolution_method: ResolutionMethod = ResolutionMethod.MERGE
    system_user_id: str = Field(default="system", min_length=1)
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_recovery_seconds: float = Field(default=30.0, gt=0.0)
    delivery_retry_seconds: float = Field(default=1.0, gt=0.0)

    @model_validator(mode="after")
    def _validate_limits(self) -> EngineConfig:
        if self.trim_to > self.max_queue_size:
            raise ValueError("trim_to must not exceed max_queue_size")
        if self.default_resolution_method == ResolutionMethod.MANUAL:
            raise ValueError("Automatic resolution cannot use the manual method")
        return self
