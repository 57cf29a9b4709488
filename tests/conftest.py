"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from watchtower.config import EngineSettings
from watchtower.monitoring.models import Alert, Channel, Monitor, MonitorType, ProbeResult
from watchtower.monitoring.probe import Probe
from watchtower.monitoring.store import InMemoryStore, UserProfile
from watchtower.notifications.channels import ChannelClient, SendResult
from watchtower.notifications.entitlements import PlanType


class FakeClock:
    """Controllable source of "now"."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ScriptedProbe(Probe):
    """
    Returns queued results in order, repeating the last one.

    Setting ``hold`` makes each run wait on that event first.
    """

    def __init__(self, *results: ProbeResult) -> None:
        self._results = list(results)
        self.calls: list[str] = []
        self.hold: asyncio.Event | None = None

    async def run(self, monitor: Monitor, timeout: float) -> ProbeResult:
        self.calls.append(monitor.id)
        if self.hold is not None:
            await self.hold.wait()
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


class RecordingClient(ChannelClient):
    """Channel client that records what it was asked to send."""

    def __init__(
        self,
        channel: Channel,
        result: SendResult | None = None,
        error: Exception | None = None,
        address: str | None = "recipient",
    ) -> None:
        self.channel = channel
        self.result = result or SendResult(success=True, message_id="msg-1")
        self.error = error
        self.address = address
        self.sent: list[tuple[str, Any]] = []

    def address_for(self, user: UserProfile) -> str | None:
        return self.address

    async def send(self, address: str, rendered: Any) -> SendResult:
        self.sent.append((address, rendered))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def settings() -> EngineSettings:
    """Engine settings independent of the environment."""
    return EngineSettings(
        max_concurrent_jobs=10,
        max_retries=3,
        retry_delay=60,
        batch_size=5,
        notification_max_attempts=3,
        notification_retry_delay=120,
        app_url="https://watchtower.test",
        smtp_host=None,
        persist_path=None,
    )


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh memory-only store."""
    return InMemoryStore()


@pytest.fixture
def pro_user() -> UserProfile:
    """User on a plan with advanced notifications."""
    return UserProfile(
        id="user-pro",
        email="ops@example.com",
        plan=PlanType.PROFESSIONAL,
        discord_webhook_url="https://discord.test/webhook",
    )


@pytest.fixture
def free_user() -> UserProfile:
    """User on the free plan."""
    return UserProfile(id="user-free", email="free@example.com", plan=PlanType.FREE)


def make_monitor(
    monitor_id: str = "mon-1",
    interval: int = 300,
    monitor_type: MonitorType = MonitorType.HTTP,
    user_id: str = "user-pro",
    **kwargs: Any,
) -> Monitor:
    """Build a monitor with sensible defaults."""
    return Monitor(
        id=monitor_id,
        user_id=user_id,
        name=kwargs.pop("name", f"Monitor {monitor_id}"),
        type=monitor_type,
        url=kwargs.pop("url", "https://example.com"),
        interval=interval,
        **kwargs,
    )


def make_alert(
    monitor_id: str = "mon-1",
    conditions: Any = None,
    channels: list[Channel] | None = None,
    **kwargs: Any,
) -> Alert:
    """Build an alert that expects HTTP 200 by default."""
    return Alert(
        id=kwargs.pop("alert_id", f"alert-{monitor_id}"),
        monitor_id=monitor_id,
        name=kwargs.pop("name", "Site is up"),
        conditions=conditions
        if conditions is not None
        else [{"field": "status_code", "operator": "equals", "value": 200}],
        channels=channels or [Channel.EMAIL],
        **kwargs,
    )
