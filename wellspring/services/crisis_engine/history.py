"""History tracker - per-subject view over recent alerts.

The view is derived on every detection straight from the alert store;
nothing is cached. Two detections racing for the same subject may each
miss the other's alert, undercounting by at most one. That trade-off is
accepted: detection never waits on another detection.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from wellspring.shared.models import HistoryPattern, SafetyAlert, Severity
from wellspring.shared.utils import hash_pii
from .alert_repository import AlertRepository
from .config import CrisisConfig
from .errors import HistoryLookupFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrisisHistory:
    """Subject crisis history within the trailing window."""
    recent_alerts: int
    last_alert_at: Optional[datetime] = None
    pattern: Optional[HistoryPattern] = None


class HistoryTracker:
    """Reads committed alerts to classify a subject's recent pattern."""

    def __init__(
        self,
        repository: AlertRepository,
        config: Optional[CrisisConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.repository = repository
        self.config = config or CrisisConfig()
        self._clock = clock

    def _alerts_since(self, subject_id: str, since: Optional[datetime]) -> List[SafetyAlert]:
        try:
            return self.repository.query_by_subject(subject_id, since=since)
        except Exception as e:
            logger.error(
                "HISTORY_LOOKUP_FAILED",
                extra={
                    "subject_id_hash": hash_pii(subject_id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            raise HistoryLookupFailed(f"History lookup failed: {e}") from e

    def recent_alert_count(self, subject_id: str, window_days: Optional[int] = None) -> int:
        """Number of alerts created within the last `window_days` (default 30)."""
        days = self.config.history_window_days if window_days is None else window_days
        return len(self._alerts_since(subject_id, self._clock() - timedelta(days=days)))

    def last_alert_timestamp(self, subject_id: str) -> Optional[datetime]:
        """Creation time of the subject's most recent alert, if any."""
        alerts = self._alerts_since(subject_id, None)
        return alerts[0].created_at if alerts else None

    def history(self, subject_id: str) -> CrisisHistory:
        """Count, last alert time and named pattern for the trailing window.

        Raises:
            HistoryLookupFailed: If the alert store is unavailable
        """
        now = self._clock()
        alerts = self._alerts_since(
            subject_id, now - timedelta(days=self.config.history_window_days)
        )
        count = len(alerts)
        last_alert_at = alerts[0].created_at if alerts else None

        return CrisisHistory(
            recent_alerts=count,
            last_alert_at=last_alert_at,
            pattern=self.classify_pattern(count, last_alert_at, now),
        )

    def classify_pattern(
        self,
        count: int,
        last_alert_at: Optional[datetime],
        now: datetime,
    ) -> Optional[HistoryPattern]:
        """frequent_crisis > escalating > recent_crisis, first match wins."""
        if count > self.config.frequent_crisis_threshold:
            return HistoryPattern.FREQUENT_CRISIS
        if count > self.config.escalating_threshold:
            return HistoryPattern.ESCALATING
        if last_alert_at is not None and now - last_alert_at < timedelta(
            days=self.config.recent_crisis_days
        ):
            return HistoryPattern.RECENT_CRISIS
        return None

    def is_in_cooldown(self, subject_id: str) -> bool:
        """True if the subject had a CRITICAL alert within the cooldown period."""
        since = self._clock() - timedelta(minutes=self.config.cooldown_minutes)
        return any(
            alert.severity == Severity.CRITICAL
            for alert in self._alerts_since(subject_id, since)
        )
