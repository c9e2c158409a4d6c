"""
Retry and circuit-breaking for the pipeline's external collaborators.

The similarity RPC is retried with exponential backoff; the classical
baseline cache is guarded by a circuit breaker so a dead store costs one
failed round trip per recovery window instead of one per candidate.
"""

import time
import functools
import threading
from typing import Callable, Type, Tuple, Optional


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class CircuitOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""
    pass


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable] = None,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        retry_if: Optional predicate; a caught exception for which it returns
            False is re-raised immediately
        on_retry: Optional callback function(attempt, exception, delay)

    Example:
        @exponential_backoff(max_retries=3, base_delay=0.5)
        def search(payload):
            return requests.post(url, json=payload, timeout=10)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if retry_if is not None and not retry_if(e):
                        raise

                    if attempt >= max_retries:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {e}"
                        ) from e

                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)

                    time.sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator


class CircuitBreaker:
    """
    Circuit breaker pattern to stop calling a failing service.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests are rejected with CircuitOpenError
    - HALF_OPEN: One trial request is let through after the recovery timeout

    Safe to share between worker threads.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exception: Type[Exception] = Exception,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of consecutive failures before opening
            recovery_timeout: Seconds to wait before allowing a trial call
            expected_exception: Exception type that counts as failure
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self._lock = threading.Lock()
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.state = self.CLOSED

    def call(self, func: Callable, *args, **kwargs):
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit is OPEN
            Original exception: If function fails in CLOSED/HALF_OPEN state
        """
        with self._lock:
            if self.state == self.OPEN:
                remaining = self._time_until_reset()
                if remaining > 0:
                    raise CircuitOpenError(
                        f"Circuit breaker is OPEN. Retry after {remaining:.0f}s"
                    )
                self.state = self.HALF_OPEN

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _time_until_reset(self) -> float:
        """Seconds until a trial call is allowed."""
        if self.opened_at is None:
            return 0.0
        elapsed = time.monotonic() - self.opened_at
        return max(0.0, self.recovery_timeout - elapsed)

    def _on_success(self):
        with self._lock:
            self.failure_count = 0
            self.opened_at = None
            self.state = self.CLOSED

    def _on_failure(self):
        with self._lock:
            self.failure_count += 1
            if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self.state = self.OPEN
                self.opened_at = time.monotonic()

    def reset(self):
        """Manually reset the circuit breaker."""
        with self._lock:
            self.failure_count = 0
            self.opened_at = None
            self.state = self.CLOSED


def should_retry_http_status(status_code: int) -> bool:
    """
    Check if HTTP status code indicates a retryable error.

    Args:
        status_code: HTTP status code

    Returns:
        True if should retry
    """
    # Retry on server errors and rate limiting
    retryable_codes = {
        408,  # Request Timeout
        429,  # Too Many Requests
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }

    return status_code in retryable_codes
