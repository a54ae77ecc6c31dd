from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from imagegen.config.settings import Settings

MIN_POLL_INTERVAL_S = 0.25


class RetryPolicy(BaseModel):
    """Polling policy for JobPoller, kept separate from the polling mechanism.

    Args:
        interval_s: Base delay between status fetches.
        max_interval_s: Ceiling for the grown interval.
        backoff_factor: Growth applied after each non-terminal poll (1.0 = fixed).
        initial_delay_s: Delay before the first fetch.
        max_wait_s: Total budget; None means poll until terminal or cancelled.
        max_consecutive_errors: Fetch failures tolerated in a row before giving up.
    """

    model_config = {"frozen": True}

    interval_s: float = Field(default=1.0, ge=0.0)
    max_interval_s: float = Field(default=5.0, ge=0.0)
    backoff_factor: float = Field(default=1.35, ge=1.0)
    initial_delay_s: float = Field(default=0.6, ge=0.0)
    max_wait_s: float | None = Field(default=None, gt=0.0)
    max_consecutive_errors: int = Field(default=3, ge=1)

    @field_validator("max_interval_s")
    @classmethod
    def validate_max_interval(cls, v: float, info) -> float:  # type: ignore[no-untyped-def]
        """Ensure max_interval_s >= interval_s."""
        base = info.data.get("interval_s", 1.0)
        if v < base:
            raise ValueError("max_interval_s must be >= interval_s")
        return v

    def clamp(self, seconds: float) -> float:
        return max(self.interval_s, min(self.max_interval_s, seconds))

    def next_interval(self, current: float) -> float:
        """Grow `current` by the backoff factor, clamped to the policy bounds."""
        return self.clamp(current * self.backoff_factor)

    def refresh_policy(self, timeout_s: float) -> RetryPolicy:
        """Short re-poll used to refresh expiring output URLs: no backoff, hard timeout."""
        interval = min(self.interval_s, 0.5)
        return RetryPolicy(
            interval_s=interval,
            max_interval_s=interval,
            backoff_factor=1.0,
            initial_delay_s=0.0,
            max_wait_s=timeout_s,
            max_consecutive_errors=1,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        interval = max(MIN_POLL_INTERVAL_S, settings.poll_interval_seconds)
        return cls(
            interval_s=interval,
            max_interval_s=max(settings.poll_max_interval_seconds, interval),
            backoff_factor=settings.poll_backoff_factor,
            initial_delay_s=settings.poll_initial_delay_seconds,
        )
