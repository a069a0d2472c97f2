"""Escalation timers on top of APScheduler.

One DateTrigger job per (alert, level). Job ids are deterministic so a
timer can be cancelled, or re-armed after restart, without bookkeeping.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from .protocol import ESCALATION_PATH

logger = logging.getLogger(__name__)


def job_id(alert_id: str, level: int) -> str:
    return f"escalate:{alert_id}:{level}"


class EscalationScheduler:
    """Arms and cancels per-alert escalation timers.

    Run dates are naive UTC datetimes, matching SafetyAlert timestamps.
    """

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("ESCALATION_SCHEDULER_STARTED")

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("ESCALATION_SCHEDULER_STOPPED")

    def arm(
        self,
        alert_id: str,
        level: int,
        run_date: datetime,
        func: Callable[[str, int], None],
    ) -> str:
        """Schedule func(alert_id, level) at run_date.

        A run_date in the past fires as soon as the scheduler picks it up.
        Re-arming the same (alert, level) replaces the previous job.
        """
        jid = job_id(alert_id, level)
        self._scheduler.add_job(
            func,
            DateTrigger(run_date=run_date, timezone="UTC"),
            args=[alert_id, level],
            id=jid,
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug(
            "ESCALATION_TIMER_ARMED",
            extra={"alert_id": alert_id, "level": level, "run_date": run_date.isoformat()}
        )
        return jid

    def cancel(self, alert_id: str, level: int) -> bool:
        """Remove a pending timer; False if it already fired or never existed."""
        try:
            self._scheduler.remove_job(job_id(alert_id, level))
        except JobLookupError:
            return False
        return True

    def cancel_all(self, alert_id: str) -> int:
        """Cancel every escalation level for an alert; returns how many were pending."""
        return sum(1 for step in ESCALATION_PATH if self.cancel(alert_id, step.level))
