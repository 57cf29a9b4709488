"""
Retry Policy

A single retry policy shared by the scheduler (job-level faults) and the
notification dispatcher (channel delivery failures).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from watchtower.config import EngineSettings
from watchtower.monitoring.errors import MonitorNotFoundError


@dataclass
class RetryPolicy:
    """
    Fixed-delay retry policy.

    Attributes:
        max_attempts: Failures tolerated before giving up
        delay_seconds: Fixed delay before the next attempt
        retryable_exceptions: Exception types that may be retried
        terminal_exceptions: Exception types that are never retried
    """

    max_attempts: int = 3
    delay_seconds: float = 60.0
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,)
    terminal_exceptions: tuple[type[BaseException], ...] = field(default_factory=tuple)

    def is_retryable(self, error: BaseException) -> bool:
        """Classify an error as retryable or terminal."""
        if isinstance(error, self.terminal_exceptions):
            return False
        flagged = getattr(error, "retryable", None)
        if flagged is not None:
            return bool(flagged)
        return isinstance(error, self.retryable_exceptions)

    def should_retry(self, failures: int, error: BaseException | None = None) -> bool:
        """
        Decide whether another attempt is allowed.

        Args:
            failures: Consecutive failures so far, including the current one
            error: The failure, if classification should be applied

        Returns:
            True if another attempt should be scheduled
        """
        if error is not None and not self.is_retryable(error):
            return False
        return failures < self.max_attempts

    def next_attempt_at(self, now: datetime) -> datetime:
        """When the next attempt is due."""
        return now + timedelta(seconds=self.delay_seconds)

    @classmethod
    def for_jobs(cls, settings: EngineSettings) -> RetryPolicy:
        """Policy for scheduler job faults."""
        return cls(
            max_attempts=settings.max_retries,
            delay_seconds=settings.retry_delay,
            terminal_exceptions=(MonitorNotFoundError,),
        )

    @classmethod
    def for_notifications(cls, settings: EngineSettings) -> RetryPolicy:
        """Policy for channel delivery failures."""
        return cls(
            max_attempts=settings.notification_max_attempts,
            delay_seconds=settings.notification_retry_delay,
        )
