"""Alert lifecycle - OPEN -> ESCALATED(level) -> HANDLED.

Each alert has its own lock. The escalation timer and resolve() both
check-and-set under it, so for any alert exactly one of "escalate to
level N" and "resolve" takes effect. Operations on different alerts
never wait on each other.
"""
import logging
import threading
import time
import uuid
import weakref
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from wellspring.shared.models import Indicator, SafetyAlert, Severity
from wellspring.shared.utils import hash_pii
from wellspring.services.audit_service import AuditEvent, AuditEventKind, AuditLogger
from .alert_repository import AlertRepository
from .config import CrisisConfig
from .errors import AlertNotFound, TimerSchedulingFailed
from .notifications import NotificationDispatcher
from .protocol import ActionType, CrisisProtocol, EscalationStep, escalation_step
from .scheduler import EscalationScheduler

logger = logging.getLogger(__name__)

# Roles notified when an automated immediate action is dispatched
ACTION_TARGETS = {
    ActionType.NOTIFY_HANDLER: frozenset({"handler"}),
    ActionType.CONNECT_COUNSELOR: frozenset({"counselor"}),
}


class AlertLifecycleManager:
    """Creates alerts, drives escalation timers and resolves alerts."""

    def __init__(
        self,
        repository: AlertRepository,
        scheduler: EscalationScheduler,
        audit: AuditLogger,
        notifier: Optional[NotificationDispatcher] = None,
        config: Optional[CrisisConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repository = repository
        self.scheduler = scheduler
        self.audit = audit
        self.notifier = notifier
        self.config = config or CrisisConfig()
        self._clock = clock
        self._sleep = sleep
        # Entries disappear once no operation holds the alert's lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._registry_lock = threading.Lock()
        self._retry_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="escalation-timer-retry"
        )

    def _lock_for(self, alert_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(alert_id)
            if lock is None:
                lock = self._locks[alert_id] = threading.Lock()
            return lock

    def open_alert(
        self,
        subject_id: str,
        severity: Severity,
        context: str,
        indicators: Iterable[Indicator],
        protocol: Optional[CrisisProtocol] = None,
    ) -> SafetyAlert:
        """Persist a new alert, dispatch its automated actions and arm level 1."""
        now = self._clock()
        alert = SafetyAlert(
            id=f"alert_{uuid.uuid4().hex[:12]}",
            subject_id=subject_id,
            severity=severity,
            context=context,
            indicators=list(indicators),
            actions=["auto_detected"],
            created_at=now,
            updated_at=now,
        )
        if protocol is not None:
            if protocol.resources:
                alert.actions.append("resources_provided")
            alert.actions.extend(f"action:{a.type.value}" for a in protocol.immediate_actions)

        with self._lock_for(alert.id):
            self.repository.put(alert)

        log_extra = {
            "alert_id": alert.id,
            "subject_id_hash": hash_pii(subject_id),
            "severity": severity.value,
            "context": context,
            "indicator_count": len(alert.indicators),
        }
        if severity == Severity.CRITICAL:
            logger.critical("SAFETY_ALERT_CREATED", extra=log_extra)
        else:
            logger.warning("SAFETY_ALERT_CREATED", extra=log_extra)

        self._audit(AuditEventKind.ALERT_CREATED, alert, {
            "context": context,
            "indicators": [i.pattern for i in alert.indicators],
        })
        if protocol is not None:
            self._audit(AuditEventKind.PROTOCOL_EXECUTED, alert, {
                "protocol_id": protocol.id,
                "immediate_actions": [a.id for a in protocol.immediate_actions],
                "resources": [r.id for r in protocol.resources],
            })
            for action in protocol.immediate_actions:
                targets = ACTION_TARGETS.get(action.type)
                if action.automated and targets:
                    self._notify(targets, alert, {"action": action.type.value})

        self._arm(alert, 1)
        return alert

    def escalate(self, alert_id: str, level: int) -> bool:
        """Apply escalation step `level` if the alert is still below it and unhandled.

        Returns:
            True if the alert was escalated, False if this was a no-op
        """
        step = escalation_step(level)
        if step is None:
            return False

        with self._lock_for(alert_id):
            alert = self.repository.get(alert_id)
            if alert is None or alert.handled or alert.escalation_level >= level:
                logger.info(
                    "ESCALATION_SKIPPED",
                    extra={
                        "alert_id": alert_id,
                        "level": level,
                        "reason": "missing" if alert is None else (
                            "handled" if alert.handled else "already_escalated"
                        ),
                    }
                )
                return False

            alert.escalation_level = level
            alert.actions.append(f"escalated:{level}")
            alert.actions.extend(f"notify:{role}" for role in sorted(step.notify_targets))
            alert.updated_at = self._clock()
            self.repository.put(alert)

            self._audit(AuditEventKind.ALERT_ESCALATED, alert, {
                "level": level,
                "action": step.action,
                "notify_targets": sorted(step.notify_targets),
            })

        logger.critical(
            "SAFETY_ALERT_ESCALATED",
            extra={
                "alert_id": alert_id,
                "subject_id_hash": hash_pii(alert.subject_id),
                "severity": alert.severity.value,
                "level": level,
                "notify_targets": sorted(step.notify_targets),
            }
        )
        self._notify(step.notify_targets, alert, {"level": level, "action": step.action})
        self._arm(alert, level + 1)
        return True

    def resolve(self, alert_id: str, handled_by: str) -> SafetyAlert:
        """Mark an alert handled and cancel its pending timers.

        Idempotent: resolving a handled alert returns it unchanged and
        writes no audit entry.

        Raises:
            AlertNotFound: If no alert has this id
        """
        with self._lock_for(alert_id):
            alert = self.repository.get(alert_id)
            if alert is None:
                raise AlertNotFound(alert_id)
            if alert.handled:
                logger.info(
                    "SAFETY_ALERT_ALREADY_RESOLVED",
                    extra={"alert_id": alert_id, "handled_by": alert.handled_by}
                )
                return alert

            now = self._clock()
            alert.handled = True
            alert.handled_by = handled_by
            alert.handled_at = now
            alert.actions.append("resolved")
            alert.updated_at = now
            self.repository.put(alert)

            try:
                cancelled = self.scheduler.cancel_all(alert_id)
            except Exception as e:
                # A surviving timer is a no-op against a handled alert
                cancelled = 0
                logger.warning(
                    "ESCALATION_TIMER_CANCEL_FAILED",
                    extra={"alert_id": alert_id, "error": str(e)}
                )

            response_minutes = (now - alert.created_at).total_seconds() / 60
            self._audit(AuditEventKind.ALERT_RESOLVED, alert, {
                "handled_by": handled_by,
                "escalation_level": alert.escalation_level,
                "response_minutes": round(response_minutes, 2),
            })

        logger.info(
            "SAFETY_ALERT_RESOLVED",
            extra={
                "alert_id": alert_id,
                "handled_by": handled_by,
                "escalation_level": alert.escalation_level,
                "timers_cancelled": cancelled,
            }
        )
        return alert

    def recover(self) -> int:
        """Re-arm timers for every unhandled alert after a restart.

        The next level is derived from escalation_level and created_at;
        steps already overdue are scheduled to fire immediately.

        Returns:
            Number of timers re-armed
        """
        rearmed = 0
        for alert in self.repository.list_alerts(handled=False):
            next_level = alert.escalation_level + 1
            if escalation_step(next_level) is None:
                continue
            if self._arm(alert, next_level):
                rearmed += 1

        logger.info("ESCALATION_TIMERS_RECOVERED", extra={"rearmed": rearmed})
        return rearmed

    def get(self, alert_id: str) -> Optional[SafetyAlert]:
        return self.repository.get(alert_id)

    def active_alerts(self) -> List[SafetyAlert]:
        return self.repository.list_alerts(handled=False)

    def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Totals, resolved-today count and average response time in minutes."""
        now = now or self._clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        alerts = self.repository.list_alerts()

        handled = [a for a in alerts if a.handled and a.handled_at is not None]
        response_minutes = [
            (a.handled_at - a.created_at).total_seconds() / 60 for a in handled
        ]
        return {
            "totalAlerts": len(alerts),
            "activeAlerts": sum(1 for a in alerts if not a.handled),
            "resolvedToday": sum(1 for a in handled if a.handled_at >= start_of_day),
            "averageResponseTime": (
                round(sum(response_minutes) / len(response_minutes))
                if response_minutes else 0
            ),
        }

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every pending timer retry has finished."""
        try:
            self._retry_executor.submit(lambda: None).result(timeout=timeout)
        except RuntimeError:
            pass

    def shutdown(self) -> None:
        self._retry_executor.shutdown(wait=True)
        logger.info("ALERT_LIFECYCLE_SHUTDOWN")

    def _fire(self, alert_id: str, level: int) -> None:
        """Scheduler callback."""
        try:
            self.escalate(alert_id, level)
        except Exception as e:
            logger.critical(
                "ESCALATION_FAILED",
                extra={
                    "alert_id": alert_id,
                    "level": level,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "MANUAL_REVIEW_REQUIRED",
                }
            )

    def _arm(self, alert: SafetyAlert, level: int) -> bool:
        """Arm escalation step `level` for the alert.

        The first attempt runs inline. If it fails, further attempts run
        with backoff on the retry worker so the caller is never held up.

        Returns:
            True if the timer is armed (or there is no such step)
        """
        step = escalation_step(level)
        if step is None:
            return True

        # Timeouts are measured from creation, not from the previous step
        run_date = max(
            alert.created_at + timedelta(minutes=step.timeout_minutes),
            self._clock(),
        )
        try:
            self.scheduler.arm(alert.id, step.level, run_date, self._fire)
            return True
        except Exception as e:
            self._log_arm_retry(alert, step, 1, e)

        try:
            self._retry_executor.submit(self._retry_arm, alert, step, run_date)
        except RuntimeError:
            # Retry worker already shut down
            self._record_timer_failure(alert, TimerSchedulingFailed(alert.id, step.level, 1))
        return False

    def _retry_arm(self, alert: SafetyAlert, step: EscalationStep, run_date: datetime) -> None:
        try:
            self._arm_with_retry(alert, step, run_date)
        except TimerSchedulingFailed as e:
            self._record_timer_failure(alert, e)
        except Exception as e:
            logger.critical(
                "ESCALATION_TIMER_RETRY_FAILED",
                extra={
                    "alert_id": alert.id,
                    "level": step.level,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "MANUAL_ESCALATION_REQUIRED",
                }
            )

    def _arm_with_retry(self, alert: SafetyAlert, step: EscalationStep, run_date: datetime) -> None:
        """Attempts 2..timer_retry_attempts, with exponential backoff between them."""
        attempts = max(1, self.config.timer_retry_attempts)
        delay = self.config.timer_retry_backoff_seconds

        for attempt in range(2, attempts + 1):
            self._sleep(delay)
            delay *= 2
            if self._is_handled(alert.id):
                logger.info(
                    "ESCALATION_TIMER_RETRY_ABANDONED",
                    extra={"alert_id": alert.id, "level": step.level, "reason": "handled"}
                )
                return
            try:
                self.scheduler.arm(alert.id, step.level, run_date, self._fire)
                return
            except Exception as e:
                self._log_arm_retry(alert, step, attempt, e)

        raise TimerSchedulingFailed(alert.id, step.level, attempts)

    def _log_arm_retry(
        self,
        alert: SafetyAlert,
        step: EscalationStep,
        attempt: int,
        error: Exception,
    ) -> None:
        logger.warning(
            "ESCALATION_TIMER_ARM_RETRY",
            extra={
                "alert_id": alert.id,
                "level": step.level,
                "attempt": attempt,
                "error": str(error),
            }
        )

    def _is_handled(self, alert_id: str) -> bool:
        with self._lock_for(alert_id):
            stored = self.repository.get(alert_id)
            return stored is None or stored.handled

    def _record_timer_failure(self, alert: SafetyAlert, error: TimerSchedulingFailed) -> None:
        # Only an open alert can be left without an armed escalation
        with self._lock_for(alert.id):
            stored = self.repository.get(alert.id)
            if stored is None or stored.handled:
                logger.info(
                    "ESCALATION_TIMER_FAILURE_IGNORED",
                    extra={"alert_id": alert.id, "level": error.level}
                )
                return
            stored.actions.append("escalation_timer_failed")
            stored.updated_at = self._clock()
            self.repository.put(stored)

        logger.critical(
            "ESCALATION_TIMER_FAILED",
            extra={
                "alert_id": alert.id,
                "level": error.level,
                "attempts": error.attempts,
                "action": "MANUAL_ESCALATION_REQUIRED",
            }
        )
        self._audit(AuditEventKind.TIMER_SCHEDULING_FAILED, alert, {
            "level": error.level,
            "attempts": error.attempts,
            "error": str(error),
            "critical": True,
        })

    def _notify(self, targets: Iterable[str], alert: SafetyAlert, extra: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        payload = {
            "alert_id": alert.id,
            "subject_id_hash": hash_pii(alert.subject_id),
            "severity": alert.severity.value,
            "context": alert.context,
        }
        payload.update(extra)
        self.notifier.notify(targets, payload)

    def _audit(self, kind: AuditEventKind, alert: SafetyAlert, details: Dict[str, Any]) -> None:
        self.audit.record(AuditEvent(
            kind=kind,
            subject_id=alert.subject_id,
            alert_id=alert.id,
            severity=alert.severity.value,
            details=details,
            timestamp=self._clock(),
        ))
