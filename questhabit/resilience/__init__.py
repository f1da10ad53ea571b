"""Resilience patterns for persistence calls

Retry with exponential backoff for transient store failures.
"""

from questhabit.resilience.retry import retry_with_backoff, with_retry, is_retryable_error

__all__ = [
    "retry_with_backoff",
    "with_retry",
    "is_retryable_error",
]
