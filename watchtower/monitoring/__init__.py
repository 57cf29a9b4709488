"""
Monitoring Engine

Scheduling, probing, condition evaluation and incident handling for
WatchTower monitors.

Provides:
- Monitor, alert, check and incident models
- Condition DSL and evaluator
- Probe executor with an HTTP probe
- Scheduler with bounded concurrency and job retries
- Execution pipeline and control surface
"""

from watchtower.monitoring.models import (
    Alert,
    AlertType,
    Channel,
    Check,
    CheckStatus,
    Incident,
    IncidentSeverity,
    JobPriority,
    JobStatus,
    Monitor,
    MonitorStatus,
    MonitorType,
    NotificationPayload,
    NotificationRecord,
    NotificationStatus,
    ProbeResult,
    ScheduledJob,
)
from watchtower.monitoring.conditions import (
    Condition,
    ConditionEvaluator,
    ConditionGroup,
    ConditionTemplates,
    EvaluationContext,
    evaluate_alert,
    parse_conditions,
)
from watchtower.monitoring.probe import (
    HttpProbe,
    Probe,
    ProbeExecutor,
)
from watchtower.monitoring.retry import RetryPolicy
from watchtower.monitoring.scheduler import (
    MonitorScheduler,
    SchedulerMetrics,
)
from watchtower.monitoring.store import (
    InMemoryStore,
    Store,
    UserProfile,
)
from watchtower.monitoring.engine import (
    MonitoringEngine,
    MonitoringResult,
    MonitoringStats,
)

__all__ = [
    # Models
    "Alert",
    "AlertType",
    "Channel",
    "Check",
    "CheckStatus",
    "Incident",
    "IncidentSeverity",
    "JobPriority",
    "JobStatus",
    "Monitor",
    "MonitorStatus",
    "MonitorType",
    "NotificationPayload",
    "NotificationRecord",
    "NotificationStatus",
    "ProbeResult",
    "ScheduledJob",
    # Conditions
    "Condition",
    "ConditionEvaluator",
    "ConditionGroup",
    "ConditionTemplates",
    "EvaluationContext",
    "evaluate_alert",
    "parse_conditions",
    # Probes
    "HttpProbe",
    "Probe",
    "ProbeExecutor",
    # Scheduler
    "RetryPolicy",
    "MonitorScheduler",
    "SchedulerMetrics",
    # Store
    "InMemoryStore",
    "Store",
    "UserProfile",
    # Engine
    "MonitoringEngine",
    "MonitoringResult",
    "MonitoringStats",
]
