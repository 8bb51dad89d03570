"""
Background job base class and retry policy.

A Job wraps one unit of work with a retry policy:
- discard_on: dropped immediately, logged as a warning
- no_retry: raised immediately
- retry_on: retried with exponential backoff up to max_attempts, then
  handed to on_retries_exhausted and raised
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Tuple, Type

from sqlalchemy.orm import Session

from evalguard.config import settings
from evalguard.jobs.queue import get_queue
from evalguard.logging import get_logger

logger = get_logger(__name__)

ExceptionTypes = Tuple[Type[BaseException], ...]


@dataclass
class RetryPolicy:
    """Which errors to retry, and how often."""

    max_attempts: int = field(default_factory=lambda: settings.job_max_attempts)
    initial_interval: float = field(default_factory=lambda: settings.job_initial_interval)
    backoff_factor: float = field(default_factory=lambda: settings.job_backoff_factor)
    retry_on: ExceptionTypes = (Exception,)
    no_retry: ExceptionTypes = ()
    discard_on: ExceptionTypes = ()

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return self.initial_interval * self.backoff_factor ** (attempt - 1)

    def should_discard(self, error: BaseException) -> bool:
        return isinstance(error, self.discard_on)

    def should_retry(self, error: BaseException) -> bool:
        if isinstance(error, self.no_retry):
            return False
        return isinstance(error, self.retry_on)


class Job:
    """
    Base class for background jobs.

    Subclasses implement perform() and may override retry_policy,
    queue_name and on_retries_exhausted().
    """

    queue_name = "default"
    retry_policy = RetryPolicy()

    def __init__(self, db: Session, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize job.

        Args:
            db: SQLAlchemy database session
            sleep: Backoff sleep function
        """
        self.db = db
        self.sleep = sleep

    @property
    def job_name(self) -> str:
        return type(self).__name__

    def perform(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def on_retries_exhausted(self, error: Exception, *args: Any, **kwargs: Any) -> None:
        """Called once after the final attempt fails. Must not raise."""

    def run(self, *args: Any, **kwargs: Any) -> Any:
        """
        Execute perform() under the retry policy.

        Returns:
            perform()'s result, or None if the job was discarded

        Raises:
            The last error when it is not retryable or retries are exhausted
        """
        policy = self.retry_policy
        attempt = 0

        while True:
            attempt += 1
            try:
                return self.perform(*args, **kwargs)
            except Exception as exc:
                self.db.rollback()

                if policy.should_discard(exc):
                    logger.job_discarded(self.job_name, str(exc))
                    return None

                if not policy.should_retry(exc):
                    raise

                if attempt >= policy.max_attempts:
                    logger.job_retries_exhausted(self.job_name, attempt, str(exc))
                    self.on_retries_exhausted(exc, *args, **kwargs)
                    raise

                delay = policy.backoff(attempt)
                logger.job_retrying(
                    self.job_name, attempt, policy.max_attempts, delay, str(exc)
                )
                self.sleep(delay)

    @classmethod
    def enqueue(cls, *args: Any, **kwargs: Any):
        """Push this job onto the default queue."""
        return get_queue().enqueue(cls, *args, **kwargs)
