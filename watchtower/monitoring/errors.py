"""
Engine Errors

Exception taxonomy for the monitoring engine.
"""

from __future__ import annotations


class WatchTowerError(Exception):
    """Base class for all engine errors."""

    pass


class ProbeError(WatchTowerError):
    """
    The monitored target could not be observed as expected.

    Unreachable targets, timeouts and unexpected content. Recorded as a
    FAILED check; never retried by the scheduler.
    """

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class EvaluationError(WatchTowerError):
    """A condition could not be evaluated."""

    pass


class UnknownFieldError(EvaluationError):
    """Raised when a condition addresses a field with no accessor."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Unknown condition field: {field}")
        self.field = field


class UnknownOperatorError(EvaluationError):
    """Raised when a condition uses an operator the evaluator does not know."""

    def __init__(self, operator: str) -> None:
        super().__init__(f"Unknown operator: {operator}")
        self.operator = operator


class SchedulingFault(WatchTowerError):
    """
    The execution pipeline itself failed for a job.

    Triggers the job retry path in the scheduler.
    """

    pass


class MonitorNotFoundError(SchedulingFault):
    """Raised when a scheduled monitor no longer exists in the store."""

    def __init__(self, monitor_id: str) -> None:
        super().__init__(f"Monitor {monitor_id} not found")
        self.monitor_id = monitor_id


class StuckJobError(WatchTowerError):
    """A job stayed RUNNING past the staleness threshold."""

    def __init__(self, job_id: str, running_seconds: float) -> None:
        super().__init__(f"Job {job_id} stuck in RUNNING for {running_seconds:.0f}s")
        self.job_id = job_id
        self.running_seconds = running_seconds


class NotificationError(WatchTowerError):
    """A channel failed to deliver a notification."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ChannelNotConfiguredError(NotificationError):
    """Raised when a channel has no client or is missing its settings."""

    def __init__(self, channel: str, detail: str | None = None) -> None:
        super().__init__(detail or f"{channel} channel not configured", retryable=False)
        self.channel = channel


class IntervalNotAllowedError(WatchTowerError):
    """Raised when a monitor's interval is below what the owner's plan allows."""

    def __init__(self, user_id: str, interval: int) -> None:
        super().__init__(f"Check interval of {interval}s is not allowed for user {user_id}")
        self.user_id = user_id
        self.interval = interval
