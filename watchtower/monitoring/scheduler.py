"""
Monitor Scheduler

Decides when and whether each monitor runs. A periodic tick admits due jobs
up to a concurrency ceiling; APScheduler drives the tick and the
maintenance passes.
"""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import structlog
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel

from watchtower.config import EngineSettings, get_settings
from watchtower.monitoring.errors import StuckJobError
from watchtower.monitoring.models import (
    JobPriority,
    JobStatus,
    Monitor,
    ScheduledJob,
)
from watchtower.monitoring.retry import RetryPolicy

logger = structlog.get_logger(__name__)

# Runs the execution pipeline for one monitor id; raising is a job fault
JobRunner = Callable[[str], Awaitable[Any]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def priority_for(monitor: Monitor) -> JobPriority:
    """
    Admission priority for a monitor.

    Business-metric monitors are HIGH; otherwise shorter intervals rank higher.
    """
    if monitor.type.is_business_metric:
        return JobPriority.HIGH
    if monitor.interval <= 60:
        return JobPriority.URGENT
    if monitor.interval <= 300:
        return JobPriority.HIGH
    if monitor.interval <= 1800:
        return JobPriority.NORMAL
    return JobPriority.LOW


class SchedulerMetrics(BaseModel):
    """Point-in-time scheduler statistics."""

    total_jobs: int = 0
    pending_jobs: int = 0
    running_jobs: int = 0
    paused_jobs: int = 0
    completed_jobs: int = 0  # Successful runs since start
    failed_jobs: int = 0  # Failed runs since start
    permanently_failed_jobs: int = 0
    average_execution_time: float = 0.0  # milliseconds
    success_rate: float = 0.0  # percent
    uptime: float = 0.0  # seconds
    last_job_time: datetime | None = None


class MonitorScheduler:
    """
    Maintains one job per active monitor and runs due jobs.

    Job map mutations are guarded by a lock so that external callers and
    the APScheduler maintenance jobs can touch it while the tick runs.
    Each admitted run is an asyncio task tracked in the running map until
    it finishes.
    """

    def __init__(
        self,
        runner: JobRunner | None = None,
        settings: EngineSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            runner: Async function executing one monitor run. If None, must be
                set before starting via set_runner().
            settings: Engine settings
            retry_policy: Policy for job faults (defaults from settings)
            clock: Source of "now", injectable for tests
        """
        self._settings = settings or get_settings()
        self._runner = runner
        self._retry = retry_policy or RetryPolicy.for_jobs(self._settings)
        self._clock = clock or _utcnow

        self._jobs: dict[str, ScheduledJob] = {}
        self._running_tasks: dict[str, asyncio.Task] = {}
        self._abandoned: set[str] = set()  # Reset jobs whose old run is still alive
        self._lock = threading.RLock()

        self._scheduler: AsyncIOScheduler | None = None
        self._periodic: list[tuple[str, Callable[[], Any], float]] = []
        self._running = False
        self._draining = False
        self._started_at: datetime | None = None

        self._completed_runs = 0
        self._failed_runs = 0
        self._average_execution_ms = 0.0
        self._last_job_time: datetime | None = None

    def set_runner(self, runner: JobRunner) -> None:
        """Set the job runner callback."""
        self._runner = runner

    def add_periodic(self, name: str, func: Callable[[], Any], seconds: float) -> None:
        """Register an extra maintenance job driven alongside the tick."""
        self._periodic.append((name, func, seconds))
        if self._scheduler is not None:
            self._add_interval_job(name, func, seconds)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the APScheduler instance."""
        jobstores = {
            "default": MemoryJobStore(),
        }
        executors = {
            "default": AsyncIOExecutor(),
        }
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # A slow tick never overlaps the next
            "misfire_grace_time": 30,
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def _add_interval_job(self, name: str, func: Callable[[], Any], seconds: float) -> None:
        assert self._scheduler is not None
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=name,
            name=name,
            replace_existing=True,
        )

    async def start(self) -> None:
        """Start the tick and maintenance jobs."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        if self._runner is None:
            raise RuntimeError("No runner set. Call set_runner() before start().")

        logger.info("Starting monitor scheduler")
        self._scheduler = self._create_scheduler()
        self._add_interval_job("scheduler:tick", self.process_jobs, self._settings.tick_interval)
        self._add_interval_job(
            "scheduler:health_check",
            self.perform_health_check,
            self._settings.health_check_interval,
        )
        self._add_interval_job("scheduler:cleanup", self.cleanup, self._settings.cleanup_interval)
        for name, func, seconds in self._periodic:
            self._add_interval_job(name, func, seconds)

        self._scheduler.start()
        self._running = True
        self._draining = False
        self._started_at = self._clock()

        logger.info(
            "Monitor scheduler started",
            job_count=len(self._jobs),
            max_concurrent_jobs=self._settings.max_concurrent_jobs,
        )

    async def stop(self) -> None:
        """Stop admitting jobs and wait for in-flight runs to finish."""
        if not self._running or self._scheduler is None:
            return

        logger.info("Stopping monitor scheduler", running_jobs=len(self._running_tasks))
        self._draining = True
        self._scheduler.shutdown(wait=False)
        self._scheduler = None

        await self.wait_for_running_jobs()
        self._running = False
        logger.info("Monitor scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    # =========================================================================
    # Job management
    # =========================================================================

    def add_job(self, monitor: Monitor) -> ScheduledJob:
        """
        Create a PENDING job for a monitor, or update the existing one.

        A FAILED or CANCELLED job is re-armed with its retry count reset.

        Args:
            monitor: The monitor to schedule

        Returns:
            The job
        """
        now = self._clock()
        job_id = ScheduledJob.job_id_for(monitor.id)

        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.interval = monitor.interval
                job.priority = priority_for(monitor)
                if job.status in (JobStatus.FAILED, JobStatus.CANCELLED):
                    job.retry_count = 0
                    job.last_error = None
                    job.arm(now, job.interval)
                job.touch(now)
                logger.debug("Job updated in place", job_id=job_id)
                return job

            job = ScheduledJob(
                id=job_id,
                monitor_id=monitor.id,
                next_run_time=now,
                interval=monitor.interval,
                priority=priority_for(monitor),
                max_retries=self._retry.max_attempts,
                created_at=now,
                updated_at=now,
            )
            job.arm(now, monitor.interval)
            self._jobs[job_id] = job

        logger.info(
            "Job added",
            job_id=job_id,
            monitor_id=monitor.id,
            interval=monitor.interval,
            priority=job.priority.name,
        )
        return job

    def remove_job(self, monitor_id: str) -> bool:
        """
        Cancel and delete a monitor's job.

        An in-flight run is not interrupted; its outcome is discarded.

        Returns:
            True if removed, False if not found
        """
        job_id = ScheduledJob.job_id_for(monitor_id)
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                return False
            job.status = JobStatus.CANCELLED
            job.touch(self._clock())

        logger.info(
            "Job removed",
            job_id=job_id,
            was_running=job_id in self._running_tasks,
        )
        return True

    def update_job(self, monitor: Monitor) -> bool:
        """
        Apply a monitor's new interval and priority to its job.

        If the interval shrinks on a PENDING job, the next run is pulled in
        to ``now + interval`` but never pushed later than already planned.
        """
        now = self._clock()
        with self._lock:
            job = self._jobs.get(ScheduledJob.job_id_for(monitor.id))
            if job is None:
                return False

            if monitor.interval < job.interval and job.status == JobStatus.PENDING:
                candidate = now + timedelta(seconds=monitor.interval)
                if job.next_run_time > candidate:
                    job.next_run_time = candidate

            job.interval = monitor.interval
            job.priority = priority_for(monitor)
            job.touch(now)

        logger.info("Job updated", job_id=job.id, interval=job.interval, priority=job.priority.name)
        return True

    def pause_job(self, monitor_id: str) -> bool:
        """Pause a pending (or in-flight) job."""
        with self._lock:
            job = self._jobs.get(ScheduledJob.job_id_for(monitor_id))
            if job is None or job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
                return False
            job.status = JobStatus.PAUSED
            job.touch(self._clock())

        logger.info("Job paused", job_id=job.id)
        return True

    def resume_job(self, monitor_id: str) -> bool:
        """
        Resume a PAUSED or FAILED job with its next run one interval from now.

        Resuming a FAILED job resets its retry count.
        """
        now = self._clock()
        with self._lock:
            job = self._jobs.get(ScheduledJob.job_id_for(monitor_id))
            if job is None or job.status not in (JobStatus.PAUSED, JobStatus.FAILED):
                return False
            if job.status == JobStatus.FAILED:
                job.retry_count = 0
                job.last_error = None
            job.arm(now, job.interval)

        logger.info("Job resumed", job_id=job.id, next_run_time=job.next_run_time.isoformat())
        return True

    def get_job(self, monitor_id: str) -> ScheduledJob | None:
        """Get a monitor's job."""
        return self._jobs.get(ScheduledJob.job_id_for(monitor_id))

    def list_jobs(self, status: JobStatus | None = None) -> list[ScheduledJob]:
        """
        List jobs, optionally filtered by status.

        Args:
            status: Filter by this status, or None for all

        Returns:
            Jobs ordered by next run time
        """
        with self._lock:
            jobs = list(self._jobs.values())
        if status:
            jobs = [j for j in jobs if j.status == status]
        return sorted(jobs, key=lambda j: j.next_run_time)

    def is_job_running(self, monitor_id: str) -> bool:
        """Whether a run for this monitor is in flight."""
        return ScheduledJob.job_id_for(monitor_id) in self._running_tasks

    async def run_now(self, monitor_id: str) -> bool:
        """
        Make a pending job due immediately and run a tick.

        Still subject to the concurrency ceiling; if no slot is free the job
        stays due and runs on a later tick.

        Returns:
            True if the run was admitted on this tick
        """
        job_id = ScheduledJob.job_id_for(monitor_id)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING or job_id in self._running_tasks:
                return False
            job.next_run_time = self._clock()

        logger.info("Manually triggering job", job_id=job_id)
        admitted = await self.process_jobs()
        return job_id in admitted

    # =========================================================================
    # Tick
    # =========================================================================

    async def process_jobs(self) -> list[str]:
        """
        One scheduling tick.

        Selects PENDING jobs that are due and not running, orders them by
        priority then next run time, takes up to ``batch_size`` and admits
        as many as fit under the concurrency ceiling.

        Returns:
            IDs of the admitted jobs
        """
        if self._draining:
            return []
        if self._runner is None:
            raise RuntimeError("No runner set. Call set_runner() before processing jobs.")

        now = self._clock()
        admitted: list[ScheduledJob] = []

        with self._lock:
            capacity = self._settings.max_concurrent_jobs - len(self._running_tasks)
            if capacity <= 0:
                return []

            due = [
                job
                for job in self._jobs.values()
                if job.status == JobStatus.PENDING
                and job.next_run_time <= now
                and job.id not in self._running_tasks
            ]
            due.sort(key=lambda j: (-j.priority, j.next_run_time))

            for job in due[: self._settings.batch_size][:capacity]:
                job.status = JobStatus.RUNNING
                job.started_at = now
                job.touch(now)
                self._running_tasks[job.id] = asyncio.create_task(
                    self._execute_job(job.id, job.monitor_id, job.run_generation),
                    name=job.id,
                )
                admitted.append(job)

        if admitted:
            logger.debug(
                "Jobs admitted",
                admitted=len(admitted),
                running=len(self._running_tasks),
            )
        return [job.id for job in admitted]

    async def _execute_job(self, job_id: str, monitor_id: str, generation: int) -> None:
        """
        Run one job and apply its outcome.

        Nothing raised by the runner escapes this boundary.
        """
        start = time.perf_counter()
        error: Exception | None = None
        try:
            assert self._runner is not None
            await self._runner(monitor_id)
        except Exception as e:
            error = e
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            with self._lock:
                if self._running_tasks.get(job_id) is asyncio.current_task():
                    del self._running_tasks[job_id]
                    self._abandoned.discard(job_id)

        self._record_run(duration_ms, success=error is None)
        self._apply_outcome(job_id, generation, error, duration_ms)

    def _record_run(self, duration_ms: float, success: bool) -> None:
        with self._lock:
            if success:
                self._completed_runs += 1
            else:
                self._failed_runs += 1
            if self._completed_runs + self._failed_runs == 1:
                self._average_execution_ms = duration_ms
            else:
                self._average_execution_ms = (self._average_execution_ms + duration_ms) / 2
            self._last_job_time = self._clock()

    def _apply_outcome(
        self,
        job_id: str,
        generation: int,
        error: Exception | None,
        duration_ms: float,
    ) -> None:
        now = self._clock()
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.run_generation != generation or job.status != JobStatus.RUNNING:
                logger.info(
                    "Discarding outcome of abandoned run",
                    job_id=job_id,
                    error=str(error) if error else None,
                )
                return

            job.started_at = None
            if error is None:
                job.retry_count = 0
                job.last_error = None
                job.status = JobStatus.COMPLETED
                job.arm(now, job.interval)
                logger.info(
                    "Job completed",
                    job_id=job_id,
                    duration_ms=round(duration_ms, 1),
                    next_run_time=job.next_run_time.isoformat(),
                )
                return

            job.retry_count += 1
            job.last_error = str(error) or type(error).__name__
            if job.retry_count < job.max_retries and self._retry.should_retry(job.retry_count, error):
                job.arm(now, self._retry.delay_seconds)
                logger.warning(
                    "Job failed, will retry",
                    job_id=job_id,
                    retry_count=job.retry_count,
                    max_retries=job.max_retries,
                    error=job.last_error,
                )
            else:
                job.status = JobStatus.FAILED
                job.touch(now)
                logger.error(
                    "Job failed permanently",
                    job_id=job_id,
                    retry_count=job.retry_count,
                    error=job.last_error,
                )

    # =========================================================================
    # Maintenance
    # =========================================================================

    def perform_health_check(self) -> list[str]:
        """
        Reset jobs stuck in RUNNING past the staleness threshold.

        The abandoned run is not cancelled; its outcome will be discarded.

        Returns:
            IDs of the jobs that were reset
        """
        now = self._clock()
        reset: list[str] = []

        with self._lock:
            for job in self._jobs.values():
                if job.status != JobStatus.RUNNING or job.started_at is None:
                    continue
                running_seconds = (now - job.started_at).total_seconds()
                if running_seconds <= self._settings.stuck_job_threshold:
                    continue

                job.run_generation += 1
                job.started_at = None
                job.last_error = str(StuckJobError(job.id, running_seconds))
                job.arm(now, self._settings.stuck_job_retry_delay)
                reset.append(job.id)
                if job.id in self._running_tasks:
                    self._abandoned.add(job.id)
                logger.error(
                    "Stuck job detected, resetting",
                    job_id=job.id,
                    running_seconds=round(running_seconds),
                    next_run_time=job.next_run_time.isoformat(),
                )

        return reset

    def stalled_jobs(self) -> list[ScheduledJob]:
        """
        Reset jobs that cannot run again yet.

        A reset job stays blocked while its abandoned run is still in the
        running map, and that run keeps its concurrency slot.
        """
        with self._lock:
            return [
                self._jobs[job_id]
                for job_id in sorted(self._abandoned)
                if job_id in self._jobs and job_id in self._running_tasks
            ]

    def cleanup(self) -> int:
        """
        Evict COMPLETED and FAILED jobs not updated within ``max_job_age``.

        Returns:
            Number of jobs removed
        """
        now = self._clock()
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in (JobStatus.COMPLETED, JobStatus.FAILED)
                and (now - job.updated_at).total_seconds() > self._settings.max_job_age
                and job_id not in self._running_tasks
            ]
            for job_id in stale:
                del self._jobs[job_id]

        if stale:
            logger.info("Cleaned up old jobs", removed=len(stale))
        return len(stale)

    async def wait_for_running_jobs(self, timeout: float | None = None) -> None:
        """Wait for all in-flight runs to finish."""
        tasks = list(self._running_tasks.values())
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_metrics(self) -> SchedulerMetrics:
        """Current scheduler metrics."""
        with self._lock:
            jobs = list(self._jobs.values())
            total_runs = self._completed_runs + self._failed_runs
            return SchedulerMetrics(
                total_jobs=len(jobs),
                pending_jobs=sum(1 for j in jobs if j.status == JobStatus.PENDING),
                running_jobs=len(self._running_tasks),
                paused_jobs=sum(1 for j in jobs if j.status == JobStatus.PAUSED),
                completed_jobs=self._completed_runs,
                failed_jobs=self._failed_runs,
                permanently_failed_jobs=sum(1 for j in jobs if j.status == JobStatus.FAILED),
                average_execution_time=self._average_execution_ms,
                success_rate=(self._completed_runs / total_runs * 100) if total_runs else 0.0,
                uptime=(
                    (self._clock() - self._started_at).total_seconds()
                    if self._started_at and self._running
                    else 0.0
                ),
                last_job_time=self._last_job_time,
            )
