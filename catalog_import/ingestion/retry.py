"""
Bounded exponential backoff for store calls.
Only transient failures are retried; the job itself is never retried.
"""

import logging
import time
from typing import Any, Callable, Optional

from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Retry a single store call on StoreUnavailableError."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.store_max_retries,
            base_delay=settings.store_retry_base_delay,
            max_delay=settings.store_retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2**attempt))

    def call(
        self, operation: Callable[..., Any], *args, description: Optional[str] = None, **kwargs
    ) -> Any:
        """
        Execute operation with exponential backoff retry logic.

        Args:
            operation: Store call to execute
            description: Name used in log messages

        Returns:
            Result of the successful call

        Raises:
            StoreUnavailableError: If all retries are exhausted
        """
        name = description or getattr(operation, "__name__", "store call")
        last_error: Optional[StoreUnavailableError] = None

        for attempt in range(self.max_retries + 1):
            try:
                return operation(*args, **kwargs)
            except StoreUnavailableError as e:
                last_error = e
                if attempt >= self.max_retries:
                    break

                delay = self.delay_for(attempt)
                logger.warning(
                    f"{name} unavailable, retrying in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{self.max_retries + 1}): {e}"
                )
                self._sleep(delay)

        logger.error(f"{name} failed after {self.max_retries + 1} attempts: {last_error}")
        raise last_error
