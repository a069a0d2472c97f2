"""Crisis engine error taxonomy.

Detection input problems are not errors: empty or non-text input simply
yields no indicators.
"""
from wellspring.shared.database import NotFoundError, RepositoryError


class CrisisEngineError(Exception):
    """Base exception for crisis engine errors."""
    pass


class AlertNotFound(CrisisEngineError, NotFoundError):
    """resolve/get called with an unknown alert id. Surfaced to the caller."""

    def __init__(self, alert_id: str):
        super().__init__(f"Safety alert not found: {alert_id}")
        self.alert_id = alert_id


class HistoryLookupFailed(CrisisEngineError, RepositoryError):
    """Alert history could not be read. Detection degrades to no history signal."""
    pass


class TimerSchedulingFailed(CrisisEngineError):
    """An escalation timer could not be armed after all retries."""

    def __init__(self, alert_id: str, level: int, attempts: int):
        super().__init__(
            f"Could not arm level {level} escalation for {alert_id} after {attempts} attempts"
        )
        self.alert_id = alert_id
        self.level = level
        self.attempts = attempts
