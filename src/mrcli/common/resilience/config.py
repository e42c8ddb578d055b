"""Configuration classes for resilience patterns.

This module provides dataclass-based configuration for retries, with
factory methods for common presets.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry policy.

    Attributes:
        max_attempts: Maximum number of attempts (1 = no retry).
        base_delay: Base delay in seconds.
        max_delay: Maximum delay cap in seconds.
        exponential_base: Multiplier for exponential backoff.
        jitter: Whether to add random jitter to delays.
        jitter_factor: Maximum jitter as a fraction (0.0-1.0).
        retryable_exceptions: Exceptions that trigger retry.
        non_retryable_exceptions: Exceptions that should not be retried.
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.5
    retryable_exceptions: tuple[type[Exception], ...] = (
        ConnectionError,
        TimeoutError,
        OSError,
    )
    non_retryable_exceptions: tuple[type[Exception], ...] = (
        ValueError,
        TypeError,
        KeyError,
    )

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base < 1:
            raise ValueError("exponential_base must be >= 1")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number (0-indexed)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay = delay + random.uniform(-jitter_range, jitter_range)
            delay = max(0, delay)

        return delay

    def is_retryable(self, error: Exception) -> bool:
        """Check if the error should trigger a retry."""
        if isinstance(error, self.non_retryable_exceptions):
            return False
        if self.retryable_exceptions:
            return isinstance(error, self.retryable_exceptions)
        return True

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> "RetryConfig":
        """Retry without sleeping; useful for tests."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=False)
