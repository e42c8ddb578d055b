"""Resilience patterns for mrcli.

Example:
    from mrcli.common.resilience import RetryPolicy, RetryConfig

    retry = RetryPolicy(RetryConfig(max_attempts=3))
    result = retry.execute(flaky_operation)
"""

from mrcli.common.resilience.config import RetryConfig
from mrcli.common.resilience.retry import RetryExhaustedError, RetryPolicy

__all__ = [
    "RetryConfig",
    "RetryPolicy",
    "RetryExhaustedError",
]
