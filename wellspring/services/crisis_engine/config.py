"""Crisis engine configuration.

Defaults reproduce the clinical calibration of the detection rules:
30-day history window, 7-day recency, >5 / >10 alert patterns and a
one-hour cooldown after a critical alert.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class CrisisConfig:
    """Configuration for scoring, protocols and the alert lifecycle."""

    # History Tracker
    history_window_days: int = 30
    recent_crisis_days: int = 7
    escalating_threshold: int = 5        # > 5 alerts in window
    frequent_crisis_threshold: int = 10  # > 10 alerts in window
    cooldown_minutes: int = 60

    # Protocol Builder
    max_resources: int = 5
    default_language: str = "en"
    default_jurisdiction: str = "international"
    resources_path: Optional[str] = None  # JSON catalog; built-in table if unset

    # Escalation timers
    timer_retry_attempts: int = 3
    timer_retry_backoff_seconds: float = 0.5

    # Notification sink (Kinesis)
    notification_stream: str = "wellspring-crisis-notifications"
    notifications_enabled: bool = True
    aws_region: str = "us-east-1"

    # Alert storage backend: "memory" or "postgres"
    alert_store: str = "memory"

    @classmethod
    def from_env(cls) -> "CrisisConfig":
        """Create config from environment variables.

        Environment variables:
            CRISIS_HISTORY_WINDOW_DAYS: History window (default 30)
            CRISIS_COOLDOWN_MINUTES: Critical cooldown (default 60)
            CRISIS_MAX_RESOURCES: Resources per protocol (default 5)
            CRISIS_DEFAULT_LANGUAGE: Fallback language (default en)
            CRISIS_DEFAULT_JURISDICTION: Fallback jurisdiction (default international)
            CRISIS_TIMER_RETRY_ATTEMPTS: Timer arming attempts (default 3)
            CRISIS_TIMER_RETRY_BACKOFF: Initial backoff seconds (default 0.5)
            NOTIFICATION_STREAM_NAME: Kinesis stream for handler notifications
            NOTIFICATIONS_ENABLED: Disable to log notifications only
            AWS_REGION: AWS region (default us-east-1)
            CRISIS_RESOURCES_PATH: JSON resource catalog (default built-in)
            ALERT_STORE: memory or postgres (default memory)
        """
        return cls(
            history_window_days=int(os.getenv("CRISIS_HISTORY_WINDOW_DAYS", "30")),
            cooldown_minutes=int(os.getenv("CRISIS_COOLDOWN_MINUTES", "60")),
            max_resources=int(os.getenv("CRISIS_MAX_RESOURCES", "5")),
            default_language=os.getenv("CRISIS_DEFAULT_LANGUAGE", "en"),
            default_jurisdiction=os.getenv("CRISIS_DEFAULT_JURISDICTION", "international"),
            resources_path=os.getenv("CRISIS_RESOURCES_PATH") or None,
            timer_retry_attempts=int(os.getenv("CRISIS_TIMER_RETRY_ATTEMPTS", "3")),
            timer_retry_backoff_seconds=float(os.getenv("CRISIS_TIMER_RETRY_BACKOFF", "0.5")),
            notification_stream=os.getenv(
                "NOTIFICATION_STREAM_NAME", "wellspring-crisis-notifications"
            ),
            notifications_enabled=_env_bool("NOTIFICATIONS_ENABLED", True),
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            alert_store=os.getenv("ALERT_STORE", "memory"),
        )
