"""
Monitoring Models

Data models for monitors, checks, alerts, incidents, notifications and
scheduler jobs.
"""

from __future__ import annotations

from datetime import datetime, timezone, timedelta
from enum import Enum, IntEnum
from typing import Any, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from watchtower.monitoring.conditions import (
    Condition,
    ConditionGroup,
    parse_conditions,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitorType(str, Enum):
    """Kinds of monitored targets."""

    HTTP = "HTTP"
    HTTPS = "HTTPS"
    KEYWORD = "KEYWORD"
    BUSINESS_METRICS = "BUSINESS_METRICS"  # Third-party metrics API
    BUSINESS_SALES = "BUSINESS_SALES"
    BUSINESS_USERS = "BUSINESS_USERS"
    BUSINESS_REVENUE = "BUSINESS_REVENUE"

    @property
    def is_business_metric(self) -> bool:
        """Whether this type is backed by a business-metric source."""
        return self.value.startswith("BUSINESS_")


class MonitorStatus(str, Enum):
    """Lifecycle of a monitor."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DISABLED = "DISABLED"


class AlertType(str, Enum):
    """Kinds of alert rules."""

    DOWN = "DOWN"
    SLOW_RESPONSE = "SLOW_RESPONSE"
    SSL_EXPIRY = "SSL_EXPIRY"
    KEYWORD_MISSING = "KEYWORD_MISSING"
    STATUS_CODE = "STATUS_CODE"
    METRIC_THRESHOLD = "METRIC_THRESHOLD"
    METRIC_ANOMALY = "METRIC_ANOMALY"
    CUSTOM = "CUSTOM"


class AlertStatus(str, Enum):
    """Lifecycle of an alert rule."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DISABLED = "DISABLED"


class Channel(str, Enum):
    """Notification delivery channels."""

    EMAIL = "EMAIL"
    SLACK = "SLACK"
    DISCORD = "DISCORD"
    WEBHOOK = "WEBHOOK"
    SMS = "SMS"
    PUSH = "PUSH"


class CheckStatus(str, Enum):
    """Outcome of a single probe."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class IncidentSeverity(str, Enum):
    """Incident severity levels."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IncidentStatus(str, Enum):
    """Lifecycle of an incident."""

    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class NotificationStatus(str, Enum):
    """Delivery state of a notification record."""

    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    BOUNCED = "BOUNCED"
    SKIPPED = "SKIPPED"  # Filtered out by plan entitlement


class JobStatus(str, Enum):
    """Scheduler job states."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    PAUSED = "PAUSED"


class JobPriority(IntEnum):
    """Admission priority among due jobs. Higher runs first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3


class Alert(BaseModel):
    """An alert rule attached to a monitor."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    monitor_id: str
    name: str
    type: AlertType = AlertType.CUSTOM
    conditions: Union[list[Condition], ConditionGroup] = Field(default_factory=list)
    channels: list[Channel] = Field(default_factory=lambda: [Channel.EMAIL])
    duration: int = 0  # Minimum sustained-failure window, informational
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("conditions", mode="before")
    @classmethod
    def _parse_conditions(cls, value: Any) -> Any:
        if isinstance(value, (Condition, ConditionGroup)):
            return value
        return parse_conditions(value)


class Monitor(BaseModel):
    """
    A user-configured target that is periodically probed.

    Read-only to the engine except for ``last_checked_at``.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str
    type: MonitorType = MonitorType.HTTP
    url: str

    # Schedule
    interval: int = Field(default=300, ge=60)  # seconds
    timeout: float = 30  # seconds
    retries: int = Field(default=0, ge=0)  # Extra probe attempts within one run

    # Request
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None

    # Expectations
    expected_status: int | None = None
    expected_content: str | None = None
    expected_keywords: list[str] = Field(default_factory=list)

    # Probe-specific options (selectors, metric names, vendor config)
    probe_options: dict[str, Any] = Field(default_factory=dict)

    # State
    status: MonitorStatus = MonitorStatus.ACTIVE
    last_checked_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    alerts: list[Alert] = Field(default_factory=list)


class ProbeResult(BaseModel):
    """Normalized outcome of probing a monitor's target."""

    success: bool
    response_time: float = 0.0  # milliseconds
    status_code: int | None = None
    fields: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class Check(BaseModel):
    """A persisted probe + evaluation for one monitor run."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    monitor_id: str
    status: CheckStatus
    response_time: float = 0.0
    status_code: int | None = None
    response_size: int | None = None
    error_message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)  # Probe fields
    evaluation: list[dict[str, Any]] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=_utcnow)


class Incident(BaseModel):
    """Record of an alert triggering on a specific check."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    monitor_id: str
    alert_id: str
    user_id: str
    check_id: str | None = None
    title: str
    description: str = ""
    severity: IncidentSeverity = IncidentSeverity.MEDIUM
    status: IncidentStatus = IncidentStatus.OPEN
    triggered_by: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: datetime | None = None

    def resolve(self) -> None:
        """Mark the incident resolved."""
        self.status = IncidentStatus.RESOLVED
        self.resolved_at = _utcnow()


class NotificationRecord(BaseModel):
    """Append-only audit entry for one channel delivery attempt."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    alert_id: str
    incident_id: str | None = None
    channel: Channel
    recipient: str
    status: NotificationStatus = NotificationStatus.PENDING
    subject: str = ""
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    retryable: bool = False
    attempt: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    sent_at: datetime | None = None


class NotificationPayload(BaseModel):
    """Channel-neutral content of an alert notification."""

    title: str
    message: str
    severity: IncidentSeverity = IncidentSeverity.MEDIUM
    metadata: dict[str, Any] = Field(default_factory=dict)
    url: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class ScheduledJob(BaseModel):
    """The scheduler's unit of recurring work, one per active monitor."""

    id: str
    monitor_id: str
    next_run_time: datetime
    interval: int  # seconds
    priority: JobPriority = JobPriority.NORMAL
    retry_count: int = 0
    max_retries: int = 3
    status: JobStatus = JobStatus.PENDING
    last_error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    run_generation: int = 0  # Bumped when a stuck run is abandoned

    @staticmethod
    def job_id_for(monitor_id: str) -> str:
        """Job id for a monitor."""
        return f"job_{monitor_id}"

    def touch(self, now: datetime) -> None:
        self.updated_at = now

    def arm(self, now: datetime, delay_seconds: float) -> None:
        """Return to PENDING with the next run ``delay_seconds`` from now."""
        self.status = JobStatus.PENDING
        self.next_run_time = now + timedelta(seconds=delay_seconds)
        self.updated_at = now
