"""Retry policy for replication.

Replication is expected to outlive network drops, so the default policy
retries forever with capped exponential backoff. A finite `max_retries`
turns the session into a best-effort one that gives up after that many
consecutive failures.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff."""

    max_retries: int | None = None  # None retries indefinitely
    backoff_base: float = 1.0  # seconds
    backoff_max: float = 60.0  # cap
    backoff_multiplier: float = 2.0

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after `attempt` consecutive failures."""
        return self.max_retries is None or attempt < self.max_retries

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds before retry number `attempt` (0-based)."""
        # Clamp the exponent so an endless retry loop cannot overflow the float
        exponent = min(attempt, 64)
        return min(self.backoff_base * (self.backoff_multiplier**exponent), self.backoff_max)
