"""Engine Configuration."""

from pydantic_settings import BaseSettings


class EngineSettings(BaseSettings):
    """Settings for the WatchTower monitoring engine."""

    # Scheduler
    tick_interval: float = 1.0  # seconds
    max_concurrent_jobs: int = 10
    max_retries: int = 3
    retry_delay: int = 60  # seconds
    batch_size: int = 5
    health_check_interval: int = 30  # seconds
    cleanup_interval: int = 300  # seconds
    max_job_age: int = 86400  # 24 hours
    stuck_job_threshold: int = 300  # 5 minutes
    stuck_job_retry_delay: int = 60  # seconds

    # Probing
    default_timeout: int = 30  # seconds
    slow_response_ceiling: float = 10000.0  # milliseconds
    user_agent: str = "WatchTower Monitor/0.1"

    # Notifications
    notification_max_attempts: int = 3
    notification_retry_delay: int = 120  # seconds
    notification_retry_interval: int = 30  # seconds between retry queue drains
    app_url: str = "http://localhost:3000"

    # SMTP
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_use_tls: bool = True

    # Default channel endpoints
    slack_webhook_url: str | None = None
    discord_webhook_url: str | None = None
    webhook_url: str | None = None

    # Store
    persist_path: str | None = None

    class Config:
        env_prefix = "WATCHTOWER_"


def get_settings() -> EngineSettings:
    """Load settings from the environment."""
    return EngineSettings()
