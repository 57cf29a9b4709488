"""
Monitoring Store

Persistence interface used by the engine, and an in-memory implementation
with optional file-based persistence of monitors.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field

from watchtower.monitoring.models import (
    Alert,
    Check,
    Incident,
    IncidentStatus,
    Monitor,
    MonitorStatus,
    NotificationRecord,
)
from watchtower.notifications.entitlements import PlanType

logger = structlog.get_logger(__name__)


class UserProfile(BaseModel):
    """Owner of monitors; carries plan and channel endpoints."""

    id: str
    email: str | None = None
    plan: PlanType = PlanType.FREE
    phone: str | None = None
    push_id: str | None = None
    discord_webhook_url: str | None = None
    slack_webhook_url: str | None = None
    webhook_url: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)


class Store(ABC):
    """
    System of record for monitors, checks, incidents and notifications.

    Every call may fail independently; the engine treats failures as
    job-level faults.
    """

    @abstractmethod
    async def get_active_monitors(self) -> list[Monitor]:
        """All monitors with status ACTIVE."""

    @abstractmethod
    async def get_monitor_with_alerts(self, monitor_id: str) -> Monitor | None:
        """A monitor with its alerts populated."""

    @abstractmethod
    async def get_latest_check(self, monitor_id: str) -> Check | None:
        """Most recent check for a monitor."""

    @abstractmethod
    async def save_check(self, check: Check) -> None:
        """Persist a check result."""

    @abstractmethod
    async def update_monitor_last_checked(self, monitor_id: str, checked_at: datetime) -> None:
        """Record when a monitor was last checked."""

    @abstractmethod
    async def create_incident(self, incident: Incident) -> str:
        """Persist an incident and return its id."""

    @abstractmethod
    async def save_notification_record(self, record: NotificationRecord) -> None:
        """Append a notification audit entry."""

    @abstractmethod
    async def get_user(self, user_id: str) -> UserProfile | None:
        """Look up a monitor owner."""


class InMemoryStore(Store):
    """
    Stores monitors, alerts, checks, incidents and notification records.

    Provides in-memory storage with optional file-based persistence of
    monitors, alerts and users.
    """

    def __init__(
        self,
        persist_path: Path | str | None = None,
        check_retention_days: int = 30,
    ) -> None:
        """
        Initialize the store.

        Args:
            persist_path: Path to persist monitors (None for memory-only)
            check_retention_days: How long to keep checks
        """
        self._persist_path = Path(persist_path) if persist_path else None
        self._check_retention = timedelta(days=check_retention_days)

        self._monitors: dict[str, Monitor] = {}
        self._alerts: dict[str, Alert] = {}
        self._users: dict[str, UserProfile] = {}
        self._checks: dict[str, list[Check]] = {}  # monitor_id -> checks
        self._incidents: dict[str, Incident] = {}
        self._notifications: list[NotificationRecord] = []
        self._lock = asyncio.Lock()

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _load_from_file(self) -> None:
        """Load monitors, alerts and users from the persistence file."""
        if not self._persist_path:
            return

        try:
            with open(self._persist_path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load store file", path=str(self._persist_path), error=str(e))
            return

        self.load_dict(data)
        logger.info(
            "Loaded monitors from file",
            monitors=len(self._monitors),
            alerts=len(self._alerts),
            users=len(self._users),
        )

    def load_dict(self, data: dict[str, Any]) -> None:
        """Populate from a ``{"users", "monitors", "alerts"}`` document."""
        for user_data in data.get("users", []):
            user = UserProfile.model_validate(user_data)
            self._users[user.id] = user
        for monitor_data in data.get("monitors", []):
            monitor_data = dict(monitor_data)
            alerts = monitor_data.pop("alerts", [])
            monitor = Monitor.model_validate(monitor_data)
            self._monitors[monitor.id] = monitor
            for alert_data in alerts:
                alert = Alert.model_validate({"monitor_id": monitor.id, **alert_data})
                self._alerts[alert.id] = alert
        for alert_data in data.get("alerts", []):
            alert = Alert.model_validate(alert_data)
            self._alerts[alert.id] = alert

    def _save_to_file(self) -> None:
        """Save monitors, alerts and users to the persistence file."""
        if not self._persist_path:
            return

        try:
            self._persist_path.parent.mkdir(parents=True, exist_ok=True)

            data = {
                "users": [u.model_dump(mode="json") for u in self._users.values()],
                "monitors": [
                    m.model_dump(mode="json", exclude={"alerts"}) for m in self._monitors.values()
                ],
                "alerts": [a.model_dump(mode="json") for a in self._alerts.values()],
                "saved_at": datetime.now(timezone.utc).isoformat(),
            }

            with open(self._persist_path, "w") as f:
                json.dump(data, f, indent=2, default=str)

        except OSError as e:
            logger.error("Failed to save store file", error=str(e))

    # Users

    async def save_user(self, user: UserProfile) -> None:
        async with self._lock:
            self._users[user.id] = user
            self._save_to_file()

    async def get_user(self, user_id: str) -> UserProfile | None:
        return self._users.get(user_id)

    # Monitors

    async def save_monitor(self, monitor: Monitor) -> None:
        """Save or update a monitor (alerts are stored separately)."""
        async with self._lock:
            self._monitors[monitor.id] = monitor.model_copy(update={"alerts": []})
            for alert in monitor.alerts:
                self._alerts[alert.id] = alert
            self._save_to_file()

    async def get_monitor(self, monitor_id: str) -> Monitor | None:
        return self._monitors.get(monitor_id)

    async def delete_monitor(self, monitor_id: str) -> bool:
        """Delete a monitor with its alerts and checks."""
        async with self._lock:
            if monitor_id not in self._monitors:
                return False

            del self._monitors[monitor_id]
            self._alerts = {
                aid: a for aid, a in self._alerts.items() if a.monitor_id != monitor_id
            }
            self._checks.pop(monitor_id, None)

            self._save_to_file()
            return True

    async def list_monitors(self, status: MonitorStatus | None = None) -> list[Monitor]:
        monitors = list(self._monitors.values())
        if status:
            monitors = [m for m in monitors if m.status == status]
        monitors.sort(key=lambda m: m.created_at, reverse=True)
        return monitors

    async def get_active_monitors(self) -> list[Monitor]:
        return await self.list_monitors(MonitorStatus.ACTIVE)

    async def get_monitor_with_alerts(self, monitor_id: str) -> Monitor | None:
        monitor = self._monitors.get(monitor_id)
        if monitor is None:
            return None
        alerts = [a for a in self._alerts.values() if a.monitor_id == monitor_id]
        return monitor.model_copy(update={"alerts": alerts})

    async def update_monitor_last_checked(self, monitor_id: str, checked_at: datetime) -> None:
        monitor = self._monitors.get(monitor_id)
        if monitor is not None:
            monitor.last_checked_at = checked_at

    # Alerts

    async def save_alert(self, alert: Alert) -> None:
        async with self._lock:
            self._alerts[alert.id] = alert
            self._save_to_file()

    # Checks

    async def save_check(self, check: Check) -> None:
        async with self._lock:
            self._checks.setdefault(check.monitor_id, []).append(check)
            self._cleanup_old_checks(check.monitor_id)

    async def get_latest_check(self, monitor_id: str) -> Check | None:
        checks = self._checks.get(monitor_id, [])
        if not checks:
            return None
        return max(checks, key=lambda c: c.checked_at)

    async def list_checks(self, monitor_id: str, limit: int = 50) -> list[Check]:
        """Checks for a monitor, newest first."""
        checks = sorted(self._checks.get(monitor_id, []), key=lambda c: c.checked_at, reverse=True)
        return checks[:limit]

    def _cleanup_old_checks(self, monitor_id: str) -> None:
        cutoff = datetime.now(timezone.utc) - self._check_retention
        self._checks[monitor_id] = [
            c for c in self._checks[monitor_id] if c.checked_at >= cutoff
        ]

    # Incidents

    async def create_incident(self, incident: Incident) -> str:
        async with self._lock:
            self._incidents[incident.id] = incident
        return incident.id

    async def get_incident(self, incident_id: str) -> Incident | None:
        return self._incidents.get(incident_id)

    async def list_incidents(
        self,
        monitor_id: str | None = None,
        status: IncidentStatus | None = None,
    ) -> list[Incident]:
        incidents = list(self._incidents.values())
        if monitor_id:
            incidents = [i for i in incidents if i.monitor_id == monitor_id]
        if status:
            incidents = [i for i in incidents if i.status == status]
        incidents.sort(key=lambda i: i.created_at, reverse=True)
        return incidents

    async def resolve_incident(self, incident_id: str) -> bool:
        incident = self._incidents.get(incident_id)
        if not incident:
            return False
        incident.resolve()
        return True

    # Notifications

    async def save_notification_record(self, record: NotificationRecord) -> None:
        async with self._lock:
            self._notifications.append(record)

    async def list_notification_records(
        self,
        alert_id: str | None = None,
        incident_id: str | None = None,
    ) -> list[NotificationRecord]:
        records = list(self._notifications)
        if alert_id:
            records = [r for r in records if r.alert_id == alert_id]
        if incident_id:
            records = [r for r in records if r.incident_id == incident_id]
        return records
