"""Retry policy implementations.

This module provides configurable retry logic with exponential backoff for
handling transient failures: flaky HTTP calls to the object store and
compare-and-swap conflicts on container writes.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

from mrcli.common.resilience.config import RetryConfig

logger = logging.getLogger(__name__)

R = TypeVar("R")


class RetryExhaustedError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Exception | None = None,
    ):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


class RetryPolicy:
    """Configurable retry policy implementation.

    Example:
        retry = RetryPolicy(RetryConfig(max_attempts=3))

        # Direct execution
        result = retry.execute(flaky_operation, arg1, arg2)

        # Manual loop for result-valued operations
        for attempt in retry.attempts():
            ...
            retry.pause(attempt)
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize retry policy.

        Args:
            config: Retry configuration.
            sleep: Sleep function, replaceable in tests.
        """
        self._config = config or RetryConfig()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def get_delay(self, attempt: int) -> float:
        """Get delay before next retry."""
        return self._config.calculate_delay(attempt)

    def attempts(self) -> range:
        """Attempt numbers (0-indexed) allowed by this policy."""
        return range(self._config.max_attempts)

    def pause(self, attempt: int) -> None:
        """Sleep before the attempt following ``attempt``."""
        delay = self.get_delay(attempt)
        if delay > 0:
            self._sleep(delay)

    def execute(self, func: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Execute function with retry policy."""
        last_error: Exception | None = None

        for attempt in self.attempts():
            try:
                return func(*args, **kwargs)
            except Exception as e:
                last_error = e

                if not self._config.is_retryable(e):
                    raise

                if attempt >= self._config.max_attempts - 1:
                    break

                delay = self.get_delay(attempt)
                logger.info(
                    "Retry policy: attempt %d failed, retrying in %.2fs: %s",
                    attempt + 1,
                    delay,
                    e,
                )
                if delay > 0:
                    self._sleep(delay)

        raise RetryExhaustedError(
            f"All {self._config.max_attempts} retry attempts exhausted",
            attempts=self._config.max_attempts,
            last_error=last_error,
        )

