"""
Retry policy for failed reconciliation passes.

The reconciler never retries on its own; the dispatcher consults these
helpers to decide whether, and how long after, a failed pass runs again.
"""
from sqlite_operator.exceptions import (
    AlreadyOwnedError,
    ConflictError,
    KubernetesError,
    OperatorException,
    ValidationError,
)

# HTTP status codes that are retryable
RETRYABLE_STATUS_CODES = {
    408,  # Request Timeout
    429,  # Too Many Requests (rate limiting)
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if a failed pass should be retried.

    Args:
        exception: The exception raised by the pass

    Returns:
        True if the exception is retryable, False otherwise
    """
    if isinstance(exception, (ValidationError, AlreadyOwnedError)):
        return False

    if isinstance(exception, ConflictError):
        return True

    if isinstance(exception, KubernetesError):
        return exception.status_code in RETRYABLE_STATUS_CODES

    if isinstance(exception, OperatorException):
        return False

    # Connection failures that escaped translation, and anything unexpected
    return True


def backoff_delay(
    failures: int,
    initial_delay: float = 0.5,
    max_delay: float = 300.0,
    exponential_base: float = 2.0,
) -> float:
    """
    Delay before the next attempt after ``failures`` consecutive failures.

    Example:
        >>> backoff_delay(1, initial_delay=1.0)
        1.0
        >>> backoff_delay(4, initial_delay=1.0)
        8.0
    """
    attempt = max(failures - 1, 0)
    return min(initial_delay * (exponential_base ** attempt), max_delay)
