"""
Exponential backoff for the Linear client.

The backoff tracks consecutive failures across calls. The first failure
waits ``initial_delay``; each further consecutive failure multiplies the
wait by ``multiplier`` up to ``max_delay``. Any success resets the counter.
The counter lives in process memory only and is never persisted.

Example:
    >>> backoff = ExponentialBackoff(initial_delay=2.0, multiplier=2.0, max_delay=30.0)
    >>> [backoff.record_failure() for _ in range(6)]
    [2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
    >>> backoff.record_success()
    >>> backoff.failure_count
    0
"""

import random


class ExponentialBackoff:
    """
    Consecutive-failure backoff with a delay cap.

    Attributes:
        initial_delay: Delay in seconds after the first failure (default: 2.0)
        multiplier: Growth factor per consecutive failure (default: 2.0)
        max_delay: Upper bound for any single delay (default: 30.0)
        jitter_ratio: Random variance ratio applied to each delay (default: 0.0)
    """

    def __init__(
        self,
        initial_delay: float = 2.0,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
        jitter_ratio: float = 0.0,
    ) -> None:
        """
        Initialize the backoff.

        Raises:
            ValueError: If parameters are invalid
        """
        if initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if max_delay < initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")

        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter_ratio = jitter_ratio
        self._failures = 0

    @property
    def failure_count(self) -> int:
        return self._failures

    def get_delay(self) -> float:
        """
        Delay for the current failure count.

        Uses initial_delay * multiplier ^ (failures - 1), capped at max_delay.
        """
        if self._failures == 0:
            delay = self.initial_delay
        else:
            delay = min(
                self.initial_delay * (self.multiplier ** (self._failures - 1)),
                self.max_delay,
            )
        if self.jitter_ratio:
            variance = delay * self.jitter_ratio
            delay = min(delay + random.uniform(-variance, variance), self.max_delay)
        return max(0.0, delay)

    def record_failure(self) -> float:
        """Record a failure and return the delay before the next attempt."""
        self._failures += 1
        return self.get_delay()

    def record_success(self) -> None:
        """Reset the consecutive failure counter."""
        self._failures = 0

    def reset(self) -> None:
        self._failures = 0
