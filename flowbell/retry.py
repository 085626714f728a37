"""
Bounded retry with exponential backoff for flaky network calls.

    retry = RetryWithBackoff(RetryPolicy(max_retries=3, base_delay=1.0))
    history = retry.run(api.list_notifications,
                        on_retry=lambda n, exc: log.info("retry %d: %s", n, exc))

Attempt 0 runs immediately; attempt n >= 1 waits
min(base_delay * backoff_factor ** (n - 1), max_delay) first. When every
attempt fails the last exception is re-raised unchanged.

retry_count / is_retrying describe the most recently started run() only.
Overlapping runs on one instance overwrite each other's counters.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, TypeVar

from flowbell.clock import Clock

T = TypeVar("T")

log = logging.getLogger("flowbell.retry")


@dataclass
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0      # seconds
    max_delay: float = 10.0      # seconds
    backoff_factor: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        if attempt <= 0:
            return 0.0
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_factor=settings.retry_backoff_factor,
        )


class RetryWithBackoff:

    def __init__(self, policy: RetryPolicy | None = None, clock: Clock | None = None):
        self.policy = policy or RetryPolicy()
        self._clock = clock or Clock()
        self._cancel = threading.Event()
        self.retry_count = 0
        self.is_retrying = False

    @property
    def max_retries(self) -> int:
        return self.policy.max_retries

    def cancel(self):
        """Abort any backoff wait in progress; the pending run() re-raises its last error."""
        self._cancel.set()

    def run(self, operation: Callable[[], T],
            on_retry: Callable[[int, Exception], None] | None = None) -> T:
        self._cancel.clear()
        last_error: Exception | None = None
        try:
            for attempt in range(self.policy.max_retries + 1):
                if attempt > 0:
                    self.is_retrying = True
                    self.retry_count = attempt
                    delay = self.policy.delay_for(attempt)
                    log.debug("Retry %d/%d in %.2fs", attempt, self.policy.max_retries, delay)
                    if not self._clock.sleep(delay, self._cancel):
                        log.info("Retry cancelled after %d attempt(s)", attempt)
                        break
                try:
                    return operation()
                except Exception as exc:
                    last_error = exc
                    if attempt < self.policy.max_retries:
                        log.info("Attempt %d failed: %s", attempt + 1, exc)
                        if on_retry is not None:
                            on_retry(attempt + 1, exc)
        finally:
            self.is_retrying = False
            self.retry_count = 0

        log.error("Giving up after %d attempt(s): %s", self.policy.max_retries + 1, last_error)
        raise last_error
