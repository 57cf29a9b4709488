"""
Monitoring Engine

The per-run execution pipeline (probe, evaluate, record, raise incidents,
notify) and the operator control surface around the scheduler.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field

from watchtower.config import EngineSettings, get_settings
from watchtower.monitoring.conditions import AlertEvaluation, EvaluationContext, evaluate_alert
from watchtower.monitoring.errors import (
    IntervalNotAllowedError,
    MonitorNotFoundError,
    SchedulingFault,
    WatchTowerError,
)
from watchtower.monitoring.models import (
    Alert,
    AlertStatus,
    AlertType,
    Check,
    CheckStatus,
    Incident,
    IncidentSeverity,
    JobStatus,
    Monitor,
    MonitorStatus,
    NotificationPayload,
    NotificationRecord,
    ProbeResult,
)
from watchtower.monitoring.probe import ProbeExecutor
from watchtower.monitoring.scheduler import Clock, MonitorScheduler, SchedulerMetrics
from watchtower.monitoring.store import Store

if TYPE_CHECKING:
    from watchtower.notifications.dispatcher import NotificationDispatcher
    from watchtower.notifications.entitlements import EntitlementGate

logger = structlog.get_logger(__name__)


class MonitoringResult(BaseModel):
    """Outcome of one pipeline run for a monitor."""

    monitor_id: str
    success: bool
    probe_result: ProbeResult | None = None
    evaluations: dict[str, AlertEvaluation] = Field(default_factory=dict)  # alert_id -> evaluation
    alerts_triggered: list[str] = Field(default_factory=list)
    check_id: str | None = None
    incident_ids: list[str] = Field(default_factory=list)
    notifications: list[NotificationRecord] = Field(default_factory=list)
    error: str | None = None
    execution_time: float = 0.0  # milliseconds
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MonitoringStats(BaseModel):
    """Aggregate engine statistics."""

    total_monitors: int = 0
    active_monitors: int = 0
    failed_monitors: int = 0
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    average_response_time: float = 0.0  # milliseconds
    alerts_triggered: int = 0
    incidents_created: int = 0
    last_check_time: datetime | None = None


def determine_severity(
    alert: Alert,
    probe_result: ProbeResult,
    slow_response_ceiling: float = 10000.0,
) -> IncidentSeverity:
    """
    Severity of an incident raised by an alert.

    Probe failure is HIGH, a DOWN alert is CRITICAL, a response slower than
    the ceiling is HIGH, anything else MEDIUM.
    """
    if not probe_result.success:
        return IncidentSeverity.HIGH
    if alert.type == AlertType.DOWN:
        return IncidentSeverity.CRITICAL
    if probe_result.response_time > slow_response_ceiling:
        return IncidentSeverity.HIGH
    return IncidentSeverity.MEDIUM


def build_alert_message(alert: Alert, monitor: Monitor, probe_result: ProbeResult) -> str:
    """Human-readable notification body for a triggered alert."""
    message = f'Monitor "{monitor.name}" has triggered an alert: {alert.name}'
    if not probe_result.success and probe_result.error:
        return f"{message}\n\nError: {probe_result.error}"
    if probe_result.response_time:
        return f"{message}\n\nResponse time: {probe_result.response_time:.0f}ms"
    return message


class MonitoringEngine:
    """
    Runs monitors on schedule and turns failed expectations into incidents.

    The engine holds no state between runs except aggregate statistics;
    the store is the system of record.
    """

    def __init__(
        self,
        store: Store,
        probe_executor: ProbeExecutor,
        dispatcher: NotificationDispatcher,
        settings: EngineSettings | None = None,
        gate: EntitlementGate | None = None,
        scheduler: MonitorScheduler | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Persistence collaborator
            probe_executor: Probes monitor targets
            dispatcher: Delivers notifications for incidents
            settings: Engine settings
            gate: Plan gate consulted when monitors are added or updated
            scheduler: Scheduler to drive (one is created if None)
            clock: Source of "now" for a created scheduler
        """
        self._settings = settings or get_settings()
        self._store = store
        self._probes = probe_executor
        self._dispatcher = dispatcher
        self._gate = gate
        self._scheduler = scheduler or MonitorScheduler(settings=self._settings, clock=clock)
        self._scheduler.set_runner(self.execute_monitor)
        self._scheduler.add_periodic(
            "notifications:retry",
            self._dispatcher.process_retries,
            self._settings.notification_retry_interval,
        )
        self._running = False
        self._stats = MonitoringStats()

    @property
    def scheduler(self) -> MonitorScheduler:
        return self._scheduler

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the scheduler and load every active monitor into it."""
        if self._running:
            logger.warning("Monitoring engine already running")
            return

        logger.info("Starting monitoring engine")
        await self._scheduler.start()
        self._running = True
        await self._sync_monitors()
        logger.info("Monitoring engine started", jobs=len(self._scheduler.list_jobs()))

    async def stop(self) -> None:
        """Stop admitting runs and wait for in-flight runs to finish."""
        if not self._running:
            return

        logger.info("Stopping monitoring engine")
        await self._scheduler.stop()
        self._running = False
        logger.info("Monitoring engine stopped")

    async def _sync_monitors(self) -> None:
        try:
            monitors = await self._store.get_active_monitors()
        except Exception as e:
            logger.error("Failed to load active monitors", error=str(e))
            return

        for monitor in monitors:
            self._scheduler.add_job(monitor)
        logger.info("Synced monitors with scheduler", count=len(monitors))

    # =========================================================================
    # Control surface
    # =========================================================================

    async def _check_interval(self, monitor: Monitor) -> None:
        if self._gate is None:
            return
        if not await self._gate.can_run_at_interval(monitor.user_id, monitor.interval):
            raise IntervalNotAllowedError(monitor.user_id, monitor.interval)

    async def add_monitor(self, monitor: Monitor) -> None:
        """
        Start scheduling a monitor.

        Raises:
            IntervalNotAllowedError: If the owner's plan forbids the interval
        """
        await self._check_interval(monitor)
        if monitor.status != MonitorStatus.ACTIVE:
            logger.info("Monitor not active, not scheduling", monitor_id=monitor.id)
            return
        self._scheduler.add_job(monitor)

    async def update_monitor(self, monitor: Monitor) -> None:
        """
        Apply a changed monitor to its job.

        A monitor that is no longer ACTIVE loses its job; one without a job
        gets one.
        """
        await self._check_interval(monitor)
        if monitor.status != MonitorStatus.ACTIVE:
            self._scheduler.remove_job(monitor.id)
            return
        if not self._scheduler.update_job(monitor):
            self._scheduler.add_job(monitor)

    async def remove_monitor(self, monitor_id: str) -> bool:
        """Stop scheduling a deleted or disabled monitor."""
        return self._scheduler.remove_job(monitor_id)

    async def pause_monitor(self, monitor_id: str) -> bool:
        return self._scheduler.pause_job(monitor_id)

    async def resume_monitor(self, monitor_id: str) -> bool:
        return self._scheduler.resume_job(monitor_id)

    async def run_monitor_now(self, monitor_id: str) -> bool:
        """
        Run a monitor out of band, still subject to the concurrency ceiling.

        Returns:
            True if the run was admitted
        """
        return await self._scheduler.run_now(monitor_id)

    def get_stats(self) -> MonitoringStats:
        """Aggregate statistics, with monitor counts taken from the scheduler."""
        jobs = self._scheduler.list_jobs()
        return self._stats.model_copy(update={
            "total_monitors": len(jobs),
            "active_monitors": sum(
                1 for j in jobs if j.status in (JobStatus.PENDING, JobStatus.RUNNING)
            ),
            "failed_monitors": sum(1 for j in jobs if j.status == JobStatus.FAILED),
        })

    def get_scheduler_metrics(self) -> SchedulerMetrics:
        return self._scheduler.get_metrics()

    def health_check(self) -> dict[str, Any]:
        """
        Engine health summary.

        Monitors whose jobs have FAILED, or whose stuck run is still
        holding a slot after a reset, are reported as degraded.
        """
        degraded = [
            {"monitor_id": j.monitor_id, "error": j.last_error}
            for j in self._scheduler.list_jobs(JobStatus.FAILED)
        ]
        degraded.extend(
            {"monitor_id": j.monitor_id, "error": "Abandoned run still in flight"}
            for j in self._scheduler.stalled_jobs()
        )
        metrics = self._scheduler.get_metrics()
        return {
            "status": "healthy" if self._running and not degraded else "degraded",
            "running": self._running,
            "scheduler_running": self._scheduler.is_running,
            "running_jobs": metrics.running_jobs,
            "degraded_monitors": degraded,
            "queued_notification_retries": len(self._dispatcher.retry_queue),
        }

    # =========================================================================
    # Execution pipeline
    # =========================================================================

    async def execute_monitor(self, monitor_id: str) -> MonitoringResult:
        """
        Run the pipeline once for a monitor.

        Probe failures are recorded as FAILED checks and may trigger alerts.
        Store failures propagate as job faults for the scheduler to retry.

        Args:
            monitor_id: Monitor to run

        Returns:
            The run's outcome

        Raises:
            MonitorNotFoundError: If the monitor no longer exists
            SchedulingFault: If the pipeline itself failed
        """
        start = time.perf_counter()
        try:
            return await self._execute(monitor_id, start)
        except WatchTowerError:
            self._record_check(None, 0, 0)
            raise
        except Exception as e:
            self._record_check(None, 0, 0)
            raise SchedulingFault(f"Pipeline failed for monitor {monitor_id}: {e}") from e

    async def _execute(self, monitor_id: str, start: float) -> MonitoringResult:
        monitor = await self._store.get_monitor_with_alerts(monitor_id)
        if monitor is None:
            raise MonitorNotFoundError(monitor_id)

        log = logger.bind(monitor_id=monitor.id, monitor_name=monitor.name)
        log.debug("Executing monitor")

        probe_result = await self._probes.run(monitor)
        previous = await self._store.get_latest_check(monitor.id)

        context = EvaluationContext(
            current_data=probe_result.fields,
            previous_data=previous.data if previous else None,
            monitor_id=monitor.id,
            url=monitor.url,
            timestamp=probe_result.timestamp,
        )

        evaluations: dict[str, AlertEvaluation] = {}
        triggered: list[Alert] = []
        for alert in monitor.alerts:
            if alert.status != AlertStatus.ACTIVE:
                continue
            evaluation = evaluate_alert(alert.conditions, context)
            evaluations[alert.id] = evaluation
            if evaluation.triggered:
                triggered.append(alert)

        check = Check(
            monitor_id=monitor.id,
            status=CheckStatus.SUCCESS if probe_result.success else CheckStatus.FAILED,
            response_time=probe_result.response_time,
            status_code=probe_result.status_code,
            response_size=probe_result.fields.get("response_size"),
            error_message=probe_result.error,
            data=probe_result.fields,
            evaluation=[
                {"alert_id": alert_id, **record}
                for alert_id, evaluation in evaluations.items()
                for record in evaluation.to_records()
            ],
            checked_at=probe_result.timestamp,
        )
        await self._store.save_check(check)
        await self._store.update_monitor_last_checked(monitor.id, check.checked_at)

        incident_ids: list[str] = []
        notifications: list[NotificationRecord] = []
        for alert in triggered:
            try:
                incident_id, records = await self._raise_incident(monitor, alert, probe_result, check)
            except Exception as e:
                log.error("Failed to handle triggered alert", alert_id=alert.id, error=str(e))
                continue
            incident_ids.append(incident_id)
            notifications.extend(records)

        self._record_check(probe_result, len(triggered), len(incident_ids))

        execution_time = (time.perf_counter() - start) * 1000
        log.info(
            "Monitor executed",
            success=probe_result.success,
            response_time_ms=round(probe_result.response_time, 1),
            alerts_triggered=len(triggered),
            incidents=len(incident_ids),
            execution_time_ms=round(execution_time, 1),
        )

        return MonitoringResult(
            monitor_id=monitor.id,
            success=probe_result.success,
            probe_result=probe_result,
            evaluations=evaluations,
            alerts_triggered=[a.id for a in triggered],
            check_id=check.id,
            incident_ids=incident_ids,
            notifications=notifications,
            error=probe_result.error,
            execution_time=execution_time,
        )

    async def _raise_incident(
        self,
        monitor: Monitor,
        alert: Alert,
        probe_result: ProbeResult,
        check: Check,
    ) -> tuple[str, list[NotificationRecord]]:
        """Create an incident for a triggered alert and notify its channels."""
        severity = determine_severity(alert, probe_result, self._settings.slow_response_ceiling)
        incident = Incident(
            monitor_id=monitor.id,
            alert_id=alert.id,
            user_id=monitor.user_id,
            check_id=check.id,
            title=f"{alert.name} - {monitor.name}",
            description=f'Alert "{alert.name}" triggered for monitor "{monitor.name}"',
            severity=severity,
            triggered_by={
                "monitor_url": monitor.url,
                "probe_result": probe_result.model_dump(mode="json", exclude={"fields"}),
                "timestamp": check.checked_at.isoformat(),
            },
        )
        incident_id = await self._store.create_incident(incident)
        logger.info(
            "Incident created",
            incident_id=incident_id,
            alert_id=alert.id,
            monitor_id=monitor.id,
            severity=severity.value,
        )

        payload = NotificationPayload(
            title=f"Alert: {alert.name}",
            message=build_alert_message(alert, monitor, probe_result),
            severity=severity,
            metadata={
                "monitor_id": monitor.id,
                "monitor_name": monitor.name,
                "incident_id": incident_id,
                "url": monitor.url,
                "response_time": probe_result.response_time,
                "error": probe_result.error,
                "alert_type": alert.type.value,
            },
            url=f"{self._settings.app_url.rstrip('/')}/dashboard?monitor={monitor.id}",
            timestamp=check.checked_at,
        )

        records: list[NotificationRecord] = []
        if alert.channels:
            records = await self._dispatcher.dispatch(
                monitor.user_id,
                alert.id,
                alert.channels,
                payload,
                incident_id=incident_id,
            )
        return incident_id, records

    def _record_check(
        self,
        probe_result: ProbeResult | None,
        alerts_triggered: int,
        incidents_created: int,
    ) -> None:
        stats = self._stats
        stats.total_checks += 1
        if probe_result is not None and probe_result.success:
            stats.successful_checks += 1
        else:
            stats.failed_checks += 1
        stats.alerts_triggered += alerts_triggered
        stats.incidents_created += incidents_created
        stats.last_check_time = datetime.now(timezone.utc)

        if probe_result is not None and probe_result.response_time:
            if stats.average_response_time == 0:
                stats.average_response_time = probe_result.response_time
            else:
                stats.average_response_time = (
                    stats.average_response_time + probe_result.response_time
                ) / 2
