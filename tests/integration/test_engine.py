"""
Integration tests for the monitoring engine: scheduler, pipeline, store
and dispatcher working together.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from conftest import FakeClock, RecordingClient, ScriptedProbe, make_alert, make_monitor
from watchtower.config import EngineSettings
from watchtower.monitoring.engine import (
    MonitoringEngine,
    build_alert_message,
    determine_severity,
)
from watchtower.monitoring.errors import (
    IntervalNotAllowedError,
    MonitorNotFoundError,
    SchedulingFault,
)
from watchtower.monitoring.models import (
    AlertStatus,
    AlertType,
    Channel,
    CheckStatus,
    IncidentSeverity,
    JobStatus,
    MonitorStatus,
    NotificationStatus,
    ProbeResult,
)
from watchtower.monitoring.probe import ProbeExecutor
from watchtower.monitoring.retry import RetryPolicy
from watchtower.monitoring.store import InMemoryStore, UserProfile
from watchtower.notifications.dispatcher import NotificationDispatcher
from watchtower.notifications.entitlements import PlanGate


def build(
    store: InMemoryStore,
    settings: EngineSettings,
    clock: FakeClock,
    probe: ScriptedProbe,
) -> tuple[MonitoringEngine, dict[Channel, RecordingClient]]:
    """Wire an engine with recording channel clients."""
    clients = {
        Channel.EMAIL: RecordingClient(Channel.EMAIL, address="ops@example.com"),
        Channel.DISCORD: RecordingClient(Channel.DISCORD, address="https://discord.test/webhook"),
    }
    gate = PlanGate(store)
    dispatcher = NotificationDispatcher(
        store,
        gate,
        clients=clients,
        retry_policy=RetryPolicy.for_notifications(settings),
        clock=clock,
    )
    engine = MonitoringEngine(
        store,
        ProbeExecutor(default_probe=probe),
        dispatcher,
        settings=settings,
        gate=gate,
        clock=clock,
    )
    return engine, clients


async def run_due(engine: MonitoringEngine) -> list[str]:
    """One scheduler tick, waiting for the admitted runs."""
    admitted = await engine.scheduler.process_jobs()
    await engine.scheduler.wait_for_running_jobs(timeout=5)
    return admitted


def response(status_code: int, at: datetime | None = None, **fields: Any) -> ProbeResult:
    """A successful HTTP observation."""
    return ProbeResult(
        success=True,
        status_code=status_code,
        response_time=250.0,
        fields={"status_code": status_code, **fields},
        timestamp=at or datetime.now(timezone.utc),
    )


class TestScheduledPipeline:
    """Tests for monitors run by the scheduler."""

    @pytest.mark.asyncio
    async def test_outage_raises_one_incident_and_notifies(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test a healthy check then an outage produce one incident and one send per channel."""
        await store.save_user(pro_user)
        monitor = make_monitor(interval=300, name="Shop")
        monitor.alerts = [make_alert(channels=[Channel.EMAIL, Channel.DISCORD], name="Shop is up")]
        await store.save_monitor(monitor)

        probe = ScriptedProbe(
            response(200, at=clock() + timedelta(seconds=300)),
            response(500, at=clock() + timedelta(seconds=600)),
        )
        engine, clients = build(store, settings, clock, probe)
        await engine.add_monitor(monitor)

        clock.advance(300)
        assert await run_due(engine) == ["job_mon-1"]
        assert await store.list_incidents() == []

        clock.advance(300)
        assert await run_due(engine) == ["job_mon-1"]

        incidents = await store.list_incidents(monitor_id="mon-1")
        assert len(incidents) == 1
        incident = incidents[0]
        assert incident.title == "Shop is up - Shop"
        assert incident.severity == IncidentSeverity.MEDIUM
        assert len(clients[Channel.EMAIL].sent) == 1
        assert len(clients[Channel.DISCORD].sent) == 1

        records = await store.list_notification_records(incident_id=incident.id)
        assert {r.channel for r in records} == {Channel.EMAIL, Channel.DISCORD}
        assert all(r.status == NotificationStatus.SENT for r in records)

        checks = await store.list_checks("mon-1")
        assert [c.status_code for c in checks] == [500, 200]
        assert checks[0].evaluation[0]["alert_id"] == monitor.alerts[0].id
        assert (await store.get_monitor("mon-1")).last_checked_at == checks[0].checked_at

        job = engine.scheduler.get_job("mon-1")
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 0

    @pytest.mark.asyncio
    async def test_payload_contents(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test the notification carries a dashboard link and monitor metadata."""
        await store.save_user(pro_user)
        monitor = make_monitor(name="API")
        monitor.alerts = [make_alert(channels=[Channel.DISCORD], name="API healthy")]
        await store.save_monitor(monitor)

        engine, clients = build(store, settings, clock, ScriptedProbe(response(503)))
        result = await engine.execute_monitor("mon-1")

        _, body = clients[Channel.DISCORD].sent[0]
        embed = body["embeds"][0]
        assert embed["title"] == "Alert: API healthy"
        assert embed["description"] == (
            'Monitor "API" has triggered an alert: API healthy\n\nResponse time: 250ms'
        )
        record = result.notifications[0]
        assert record.metadata["monitor_id"] == "mon-1"
        assert record.metadata["incident_id"] == result.incident_ids[0]
        assert "https://watchtower.test/dashboard?monitor=mon-1" in embed["fields"][1]["value"]

    @pytest.mark.asyncio
    async def test_plan_filters_channels(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        free_user: UserProfile,
    ) -> None:
        """Test a free user's Discord channel is skipped."""
        await store.save_user(free_user)
        monitor = make_monitor(interval=3600, user_id=free_user.id)
        monitor.alerts = [make_alert(channels=[Channel.EMAIL, Channel.DISCORD])]
        await store.save_monitor(monitor)

        engine, clients = build(store, settings, clock, ScriptedProbe(response(500)))
        result = await engine.execute_monitor("mon-1")

        statuses = {r.channel: r.status for r in result.notifications}
        assert statuses == {Channel.EMAIL: NotificationStatus.SENT, Channel.DISCORD: NotificationStatus.SKIPPED}
        assert clients[Channel.DISCORD].sent == []

    @pytest.mark.asyncio
    async def test_probe_failure_records_failed_check(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test an unreachable target is a FAILED check with a HIGH incident."""
        await store.save_user(pro_user)
        monitor = make_monitor(name="Shop")
        monitor.alerts = [make_alert()]
        await store.save_monitor(monitor)

        probe = ScriptedProbe(ProbeResult(success=False, error="Connection refused"))
        engine, clients = build(store, settings, clock, probe)
        result = await engine.execute_monitor("mon-1")

        assert not result.success
        assert result.error == "Connection refused"
        check = await store.get_latest_check("mon-1")
        assert check.status == CheckStatus.FAILED
        assert check.error_message == "Connection refused"

        incident = await store.get_incident(result.incident_ids[0])
        assert incident.severity == IncidentSeverity.HIGH
        assert incident.triggered_by["probe_result"]["error"] == "Connection refused"
        _, email = clients[Channel.EMAIL].sent[0]
        assert "Error: Connection refused" in email.text

    @pytest.mark.asyncio
    async def test_inactive_alerts_are_skipped(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test paused alerts are not evaluated."""
        await store.save_user(pro_user)
        monitor = make_monitor()
        monitor.alerts = [make_alert(status=AlertStatus.PAUSED)]
        await store.save_monitor(monitor)

        engine, _ = build(store, settings, clock, ScriptedProbe(response(500)))
        result = await engine.execute_monitor("mon-1")
        assert result.evaluations == {}
        assert result.incident_ids == []

    @pytest.mark.asyncio
    async def test_change_detection_uses_previous_check(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test temporal conditions compare against the last stored check."""
        await store.save_user(pro_user)
        monitor = make_monitor()
        monitor.alerts = [make_alert(conditions=[{"field": "title", "operator": "not_changed"}])]
        await store.save_monitor(monitor)

        probe = ScriptedProbe(response(200, title="Spring Sale"), response(200, title="Summer Sale"))
        engine, _ = build(store, settings, clock, probe)

        first = await engine.execute_monitor("mon-1")
        second = await engine.execute_monitor("mon-1")
        # No history on the first run, so "not changed" holds
        assert first.alerts_triggered == []
        assert second.alerts_triggered == [monitor.alerts[0].id]


class TestFaults:
    """Tests for job-level faults."""

    @pytest.mark.asyncio
    async def test_deleted_monitor_fails_job(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test a job whose monitor vanished fails without retry."""
        await store.save_user(pro_user)
        monitor = make_monitor()
        engine, _ = build(store, settings, clock, ScriptedProbe(response(200)))
        await engine.add_monitor(monitor)

        with pytest.raises(MonitorNotFoundError):
            await engine.execute_monitor("mon-1")

        clock.advance(300)
        await run_due(engine)
        job = engine.scheduler.get_job("mon-1")
        assert job.status == JobStatus.FAILED
        assert job.last_error == "Monitor mon-1 not found"

        health = engine.health_check()
        assert health["status"] == "degraded"
        assert health["degraded_monitors"] == [{"monitor_id": "mon-1", "error": "Monitor mon-1 not found"}]

    @pytest.mark.asyncio
    async def test_hung_run_reported_after_reset(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test a reset job whose run still hangs shows up as degraded."""
        await store.save_user(pro_user)
        monitor = make_monitor()
        await store.save_monitor(monitor)
        probe = ScriptedProbe(response(200))
        probe.hold = asyncio.Event()
        engine, _ = build(store, settings, clock, probe)
        await engine.add_monitor(monitor)

        clock.advance(300)
        assert await engine.scheduler.process_jobs() == ["job_mon-1"]
        await asyncio.sleep(0)
        clock.advance(301)
        assert engine.scheduler.perform_health_check() == ["job_mon-1"]

        assert engine.scheduler.get_job("mon-1").status == JobStatus.PENDING
        assert engine.health_check()["degraded_monitors"] == [
            {"monitor_id": "mon-1", "error": "Abandoned run still in flight"}
        ]

        probe.hold.set()
        await engine.scheduler.wait_for_running_jobs(timeout=5)
        assert engine.health_check()["degraded_monitors"] == []

    @pytest.mark.asyncio
    async def test_store_failure_is_scheduling_fault(
        self,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test a store error during a run is retried by the scheduler."""

        class FlakyStore(InMemoryStore):
            async def save_check(self, check):
                raise OSError("database unavailable")

        store = FlakyStore()
        await store.save_user(pro_user)
        monitor = make_monitor()
        await store.save_monitor(monitor)
        engine, _ = build(store, settings, clock, ScriptedProbe(response(200)))

        with pytest.raises(SchedulingFault):
            await engine.execute_monitor("mon-1")

        await engine.add_monitor(monitor)
        clock.advance(300)
        await run_due(engine)
        job = engine.scheduler.get_job("mon-1")
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 1
        assert "database unavailable" in job.last_error

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_run(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test a failing channel is queued for retry and the run succeeds."""
        await store.save_user(pro_user)
        monitor = make_monitor()
        monitor.alerts = [make_alert(channels=[Channel.DISCORD])]
        await store.save_monitor(monitor)

        engine, clients = build(store, settings, clock, ScriptedProbe(response(500)))
        clients[Channel.DISCORD].error = ConnectionError("reset")

        result = await engine.execute_monitor("mon-1")
        assert result.notifications[0].status == NotificationStatus.FAILED
        assert engine.health_check()["queued_notification_retries"] == 1


class TestControlSurface:
    """Tests for monitor management through the engine."""

    @pytest.mark.asyncio
    async def test_interval_below_plan_minimum(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        free_user: UserProfile,
    ) -> None:
        """Test a free user cannot schedule five-minute checks."""
        await store.save_user(free_user)
        engine, _ = build(store, settings, clock, ScriptedProbe(response(200)))

        with pytest.raises(IntervalNotAllowedError):
            await engine.add_monitor(make_monitor(interval=300, user_id=free_user.id))
        assert engine.scheduler.get_job("mon-1") is None

    @pytest.mark.asyncio
    async def test_update_and_remove(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test updates reach the job and inactive monitors are unscheduled."""
        await store.save_user(pro_user)
        engine, _ = build(store, settings, clock, ScriptedProbe(response(200)))
        await engine.add_monitor(make_monitor(interval=3600))

        await engine.update_monitor(make_monitor(interval=600))
        assert engine.scheduler.get_job("mon-1").interval == 600

        await engine.update_monitor(make_monitor(interval=600, status=MonitorStatus.PAUSED))
        assert engine.scheduler.get_job("mon-1") is None

        await engine.update_monitor(make_monitor(interval=600))
        assert engine.scheduler.get_job("mon-1") is not None
        assert await engine.remove_monitor("mon-1")

    @pytest.mark.asyncio
    async def test_inactive_monitor_not_scheduled(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test adding a paused monitor schedules nothing."""
        await store.save_user(pro_user)
        engine, _ = build(store, settings, clock, ScriptedProbe(response(200)))
        await engine.add_monitor(make_monitor(status=MonitorStatus.PAUSED))
        assert engine.scheduler.list_jobs() == []

    @pytest.mark.asyncio
    async def test_pause_resume_and_run_now(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test pausing blocks manual runs until resumed."""
        await store.save_user(pro_user)
        monitor = make_monitor()
        await store.save_monitor(monitor)
        probe = ScriptedProbe(response(200))
        engine, _ = build(store, settings, clock, probe)
        await engine.add_monitor(monitor)

        assert await engine.pause_monitor("mon-1")
        assert not await engine.run_monitor_now("mon-1")
        assert await engine.resume_monitor("mon-1")
        assert await engine.run_monitor_now("mon-1")
        await engine.scheduler.wait_for_running_jobs(timeout=5)
        assert probe.calls == ["mon-1"]

    @pytest.mark.asyncio
    async def test_start_syncs_active_monitors(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test starting loads active monitors into the scheduler."""
        await store.save_user(pro_user)
        await store.save_monitor(make_monitor(monitor_id="a"))
        await store.save_monitor(make_monitor(monitor_id="b", status=MonitorStatus.DISABLED))
        engine, _ = build(store, settings, clock, ScriptedProbe(response(200)))

        await engine.start()
        try:
            assert engine.is_running
            assert [j.monitor_id for j in engine.scheduler.list_jobs()] == ["a"]
            assert engine.health_check()["status"] == "healthy"
            assert engine.get_stats().active_monitors == 1
            metrics = engine.get_scheduler_metrics()
            assert metrics.total_jobs == 1
            assert metrics.pending_jobs == 1
        finally:
            await engine.stop()
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_stats(
        self,
        store: InMemoryStore,
        settings: EngineSettings,
        clock: FakeClock,
        pro_user: UserProfile,
    ) -> None:
        """Test aggregate statistics after runs."""
        await store.save_user(pro_user)
        monitor = make_monitor()
        monitor.alerts = [make_alert()]
        await store.save_monitor(monitor)
        engine, _ = build(store, settings, clock, ScriptedProbe(response(200), response(500)))

        await engine.execute_monitor("mon-1")
        await engine.execute_monitor("mon-1")

        stats = engine.get_stats()
        assert stats.total_checks == 2
        assert stats.successful_checks == 2
        assert stats.alerts_triggered == 1
        assert stats.incidents_created == 1
        assert stats.average_response_time == 250.0


class TestSeverity:
    """Tests for incident severity and message rules."""

    def test_severity_rules(self) -> None:
        """Test severity by probe outcome, alert type and latency."""
        alert = make_alert()
        assert determine_severity(alert, ProbeResult(success=False)) == IncidentSeverity.HIGH
        down = make_alert(type=AlertType.DOWN)
        assert determine_severity(down, ProbeResult(success=True)) == IncidentSeverity.CRITICAL
        slow = ProbeResult(success=True, response_time=12000)
        assert determine_severity(alert, slow) == IncidentSeverity.HIGH
        assert determine_severity(alert, ProbeResult(success=True, response_time=200)) == IncidentSeverity.MEDIUM

    def test_alert_message(self) -> None:
        """Test the message names the monitor and alert."""
        message = build_alert_message(make_alert(name="Up"), make_monitor(name="Site"), ProbeResult(success=True))
        assert message == 'Monitor "Site" has triggered an alert: Up'
