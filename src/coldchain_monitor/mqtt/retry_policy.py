"""Reconnect backoff for the broker session."""

from __future__ import annotations

import random


class RetryPolicy:
    """Exponential backoff with optional jitter.

    The first retry waits `base_delay_seconds`; each further attempt doubles
    it up to `max_delay_seconds`. With the default `jitter_factor` of 0 the
    delays are deterministic.
    """

    def __init__(
        self,
        base_delay_seconds: float = 5.0,
        max_delay_seconds: float = 60.0,
        jitter_factor: float = 0.0,
    ) -> None:
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max(max_delay_seconds, base_delay_seconds)
        self.jitter_factor = jitter_factor

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-indexed).

        Formula: min(base * 2**attempt, max) + uniform(0, delay * jitter_factor)
        """
        # Bound the exponent so huge attempt counts cannot overflow
        delay = min(self.base_delay_seconds * (2 ** min(attempt, 32)), self.max_delay_seconds)
        if self.jitter_factor:
            delay += random.uniform(0, delay * self.jitter_factor)
        return delay

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"jitter_factor={self.jitter_factor})"
        )
