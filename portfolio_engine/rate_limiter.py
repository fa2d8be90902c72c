# portfolio_engine/rate_limiter.py
"""
Rate-limited, retrying gateway for brokerage calls.

Every call made through a RateLimitedGateway is spaced at least
``min_delay_ms`` after the previous one, and failures classified as
transient are retried with exponential backoff. Local validation failures
and non-retryable broker rejections propagate on the first attempt.

The last-call timestamp belongs to the gateway instance. ``clock`` and
``sleep`` are injectable so tests can drive timing without waiting.
"""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from . import config
from .exceptions import TradingError, TransientApiError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RateLimitedGateway:
    """Throttle + retry wrapper with no business logic of its own."""

    def __init__(
        self,
        min_delay_ms: Optional[int] = None,
        max_retries: Optional[int] = None,
        base_delay_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        error_classifier: Optional[Callable[[Exception], Exception]] = None
    ):
        """
        Args:
            min_delay_ms: Minimum spacing between consecutive calls
            max_retries: Retries after the first attempt (total attempts = max_retries + 1)
            base_delay_seconds: Backoff base; attempt n waits base * 2**n
            clock: Monotonic seconds source
            sleep: Blocking sleep function
            error_classifier: Maps raw exceptions into the TradingError taxonomy
        """
        self.min_delay = (config.MIN_API_DELAY_MS if min_delay_ms is None else min_delay_ms) / 1000.0
        self.max_retries = config.API_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = (
            config.API_RETRY_BASE_DELAY_SECONDS if base_delay_seconds is None else base_delay_seconds
        )
        self.clock = clock
        self.sleep = sleep
        self.error_classifier = error_classifier

        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def _throttle(self) -> None:
        """Block until min_delay has passed since the previous call."""
        with self._lock:
            now = self.clock()
            if self._last_call is not None:
                elapsed = now - self._last_call
                if elapsed < self.min_delay:
                    self.sleep(self.min_delay - elapsed)
                    now = self.clock()
            self._last_call = now

    def _classify(self, error: Exception) -> Exception:
        if isinstance(error, TradingError):
            return error
        if self.error_classifier is not None:
            return self.error_classifier(error)
        # Connection resets and timeouts
        if isinstance(error, OSError):
            return TransientApiError(str(error))
        return error

    def call(self, operation: Callable[[], T], operation_name: str = "API call") -> T:
        """
        Execute ``operation`` with rate limiting and retry.

        Args:
            operation: Zero-argument callable performing one brokerage request
            operation_name: Name for logging

        Returns:
            Result of the operation

        Raises:
            TransientApiError: after the retry budget is exhausted
            TradingError: any non-retryable error, immediately
        """
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            self._throttle()
            try:
                return operation()
            except Exception as e:
                error = self._classify(e)

                if not isinstance(error, TransientApiError):
                    if error is e:
                        raise
                    raise error from e

                if attempt + 1 >= attempts:
                    logger.error(f"❌ {operation_name} failed after {attempts} attempts: {error}")
                    if error is e:
                        raise
                    raise error from e

                wait_time = self.base_delay * (2 ** attempt)
                logger.warning(
                    f"{operation_name} failed (attempt {attempt + 1}/{attempts}): {error}. "
                    f"Retrying in {wait_time:.1f}s..."
                )
                self.sleep(wait_time)

        # Unreachable: the loop either returns or raises
        raise TransientApiError(f"{operation_name} failed")
