"""Crisis handler - the evaluate/resolve surface of the crisis engine.

Detection -> history -> scoring -> protocol -> alert, in that order.
The handler never raises out of evaluate_input(): a failure anywhere in
the pipeline degrades to the conservative answer (the severity found so
far, or LOW, always with support resources) so the chat flow that
called it is never blocked by a crisis-subsystem fault.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from wellspring.shared.database import get_connection_manager
from wellspring.shared.models import HistoryPattern, Indicator, SafetyAlert, Severity
from wellspring.shared.utils import hash_pii, hash_text_for_audit
from wellspring.services.audit_service import (
    AuditEvent,
    AuditEventKind,
    AuditLogger,
    AuditRepository,
)
from wellspring.services.safety_service import (
    REPEATED_CRISIS_PATTERN,
    IndicatorDetector,
    highest_tier,
)
from .alert_repository import AlertRepository, InMemoryAlertRepository, PostgresAlertRepository
from .classifier import SeverityClassifier
from .config import CrisisConfig
from .errors import HistoryLookupFailed
from .history import HistoryTracker
from .lifecycle import AlertLifecycleManager
from .notifications import NotificationDispatcher
from .protocol import CrisisProtocol, ProtocolBuilder
from .resources import Resource, ResourceCatalog, country_from_timezone
from .scheduler import EscalationScheduler

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """Outcome of one evaluate_input call."""
    is_crisis: bool
    severity: Severity
    indicators: List[Indicator] = field(default_factory=list)
    resources: List[Resource] = field(default_factory=list)
    protocol: Optional[CrisisProtocol] = None
    alert_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isCrisis": self.is_crisis,
            "severity": self.severity.value,
            "indicators": [i.to_dict() for i in self.indicators],
            "resources": [r.to_dict() for r in self.resources],
            "protocol": self.protocol.to_dict() if self.protocol else None,
            "alertId": self.alert_id,
        }


class CrisisHandler:
    """Orchestrates crisis detection and the alert lifecycle.

    All collaborators are injected; build_default() wires the
    process-wide instances from the environment.
    """

    def __init__(
        self,
        detector: IndicatorDetector,
        history: HistoryTracker,
        classifier: SeverityClassifier,
        protocol_builder: ProtocolBuilder,
        lifecycle: AlertLifecycleManager,
        audit: AuditLogger,
        config: Optional[CrisisConfig] = None,
    ):
        self.detector = detector
        self.history = history
        self.classifier = classifier
        self.protocol_builder = protocol_builder
        self.lifecycle = lifecycle
        self.audit = audit
        self.config = config or CrisisConfig()

        logger.info("CRISIS_HANDLER_INITIALIZED")

    def evaluate_input(
        self,
        subject_id: str,
        text: Any,
        context: str = "unknown",
        language: str = "en",
        jurisdiction: Optional[str] = None,
        timezone: Optional[str] = None,
        behaviors: Iterable[str] = (),
        assessment: Optional[Dict[str, Any]] = None,
    ) -> EvaluationResult:
        """Evaluate one chat message or assessment answer.

        Args:
            subject_id: Subject the input belongs to
            text: Message text; empty or non-text input yields no keyword indicators
            context: Provenance, e.g. "chat" or "assessment:phq9"
            language: Subject language for resource lookup
            jurisdiction: Jurisdiction code; derived from timezone when absent
            timezone: IANA timezone, used only when jurisdiction is absent
            behaviors: Behavioral pattern names computed upstream
            assessment: Optional {"instrument", "question_id", "response"}

        Returns:
            EvaluationResult; never raises
        """
        language = language or self.config.default_language
        indicators: List[Indicator] = []
        severity: Optional[Severity] = None
        resources: List[Resource] = []
        protocol: Optional[CrisisProtocol] = None
        alert_id: Optional[str] = None

        try:
            jurisdiction = self._resolve_jurisdiction(jurisdiction, timezone)

            indicators = self.detector.detect(text, behaviors)
            if assessment:
                indicators.extend(self.detector.detect_assessment_response(
                    assessment.get("instrument", ""),
                    assessment.get("question_id", ""),
                    assessment.get("response"),
                ))
            self._record(AuditEventKind.DETECTION, subject_id, None, {
                "context": context,
                "indicators": [i.pattern for i in indicators],
                "text_hash": hash_text_for_audit(text) if isinstance(text, str) else None,
            })

            base = self.classifier.base_severity(indicators)
            pattern = self._history_pattern(subject_id) if base is not None else None
            severity = self.classifier.classify(indicators, pattern)
            if self.classifier.should_upgrade(base, pattern):
                indicators.extend(self.detector.behavioral_indicators([REPEATED_CRISIS_PATTERN]))

            reported = severity or Severity.LOW
            self._record(AuditEventKind.SEVERITY_SCORED, subject_id, reported, {
                "base_severity": base.value if base else None,
                "history_pattern": pattern.value if pattern else None,
                "no_signal": severity is None,
            })

            if reported <= Severity.LOW:
                resources = self.protocol_builder.resources_for(reported, language, jurisdiction)
                return EvaluationResult(
                    is_crisis=False,
                    severity=reported,
                    indicators=indicators,
                    resources=resources,
                )

            protocol = self.protocol_builder.build(reported, indicators, language, jurisdiction)
            resources = list(protocol.resources)

            logger.critical(
                "CRISIS_DETECTED",
                extra={
                    "subject_id_hash": hash_pii(subject_id),
                    "severity": reported.value,
                    "context": context,
                    "indicators": [i.pattern for i in indicators],
                    "history_pattern": pattern.value if pattern else None,
                }
            )

            try:
                alert = self.lifecycle.open_alert(
                    subject_id, reported, context, indicators, protocol
                )
                alert_id = alert.id
            except Exception as e:
                logger.critical(
                    "SAFETY_ALERT_CREATE_FAILED",
                    extra={
                        "subject_id_hash": hash_pii(subject_id),
                        "severity": reported.value,
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "action": "MANUAL_REVIEW_REQUIRED",
                    }
                )

            return EvaluationResult(
                is_crisis=True,
                severity=reported,
                indicators=indicators,
                resources=resources,
                protocol=protocol,
                alert_id=alert_id,
            )

        except Exception as e:
            fallback = severity or highest_tier(indicators) or Severity.LOW
            logger.critical(
                "CRISIS_EVALUATION_FAILED",
                extra={
                    "subject_id_hash": hash_pii(subject_id),
                    "fallback_severity": fallback.value,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return EvaluationResult(
                is_crisis=fallback > Severity.LOW,
                severity=fallback,
                indicators=indicators,
                resources=resources or self._fallback_resources(fallback, language, jurisdiction),
                protocol=protocol,
                alert_id=alert_id,
            )

    def _resolve_jurisdiction(self, jurisdiction: Optional[str], timezone: Optional[str]) -> str:
        if jurisdiction:
            return jurisdiction
        if timezone:
            return country_from_timezone(timezone)
        return self.config.default_jurisdiction

    def _history_pattern(self, subject_id: str) -> Optional[HistoryPattern]:
        """Named history pattern, or None if history is unavailable."""
        try:
            return self.history.history(subject_id).pattern
        except HistoryLookupFailed:
            # Missing an upgrade is safer than failing detection
            logger.warning(
                "HISTORY_SIGNAL_UNAVAILABLE",
                extra={"subject_id_hash": hash_pii(subject_id), "action": "score_without_history"}
            )
            return None

    def _fallback_resources(
        self,
        severity: Severity,
        language: str,
        jurisdiction: Optional[str],
    ) -> List[Resource]:
        try:
            return self.protocol_builder.resources_for(
                severity, language, jurisdiction or self.config.default_jurisdiction
            )
        except Exception as e:
            logger.critical("CRISIS_RESOURCES_UNAVAILABLE", extra={"error": str(e)})
            return []

    def _record(
        self,
        kind: AuditEventKind,
        subject_id: str,
        severity: Optional[Severity],
        details: Dict[str, Any],
    ) -> None:
        self.audit.record(AuditEvent(
            kind=kind,
            subject_id=subject_id,
            severity=severity.value if severity else None,
            details=details,
        ))

    def resolve_alert(self, alert_id: str, handled_by: str) -> SafetyAlert:
        """Mark an alert handled. Idempotent.

        Raises:
            AlertNotFound: If no alert has this id
        """
        return self.lifecycle.resolve(alert_id, handled_by)

    def get_alert(self, alert_id: str) -> Optional[SafetyAlert]:
        return self.lifecycle.get(alert_id)

    def get_active_alerts(self) -> List[SafetyAlert]:
        return self.lifecycle.active_alerts()

    def get_crisis_stats(self) -> Dict[str, Any]:
        return self.lifecycle.stats()

    def is_in_cooldown(self, subject_id: str) -> bool:
        """True if the subject had a CRITICAL alert within the cooldown window.

        Raises:
            HistoryLookupFailed: If the alert store is unavailable
        """
        return self.history.is_in_cooldown(subject_id)

    def shutdown(self) -> None:
        self.lifecycle.scheduler.shutdown(wait=False)
        self.lifecycle.shutdown()
        self.audit.flush()
        self.audit.shutdown()
        logger.info("CRISIS_HANDLER_SHUTDOWN")


def build_default(config: Optional[CrisisConfig] = None) -> CrisisHandler:
    """Wire a CrisisHandler from the environment, start timers and recover.

    ALERT_STORE=postgres uses the shared connection pool for both alerts
    and audit entries; otherwise everything is kept in memory.
    """
    config = config or CrisisConfig.from_env()

    if config.alert_store == "postgres":
        connection_manager = get_connection_manager()
        repository: AlertRepository = PostgresAlertRepository(connection_manager)
        audit_repository = AuditRepository(connection_manager)
    else:
        repository = InMemoryAlertRepository()
        audit_repository = AuditRepository()

    catalog = (
        ResourceCatalog.from_json(config.resources_path)
        if config.resources_path else ResourceCatalog()
    )
    audit = AuditLogger(repository=audit_repository)
    scheduler = EscalationScheduler()
    notifier = NotificationDispatcher(
        stream_name=config.notification_stream,
        enabled=config.notifications_enabled,
        region=config.aws_region,
    )
    lifecycle = AlertLifecycleManager(
        repository=repository,
        scheduler=scheduler,
        audit=audit,
        notifier=notifier,
        config=config,
    )

    handler = CrisisHandler(
        detector=IndicatorDetector(),
        history=HistoryTracker(repository, config),
        classifier=SeverityClassifier(),
        protocol_builder=ProtocolBuilder(catalog, config),
        lifecycle=lifecycle,
        audit=audit,
        config=config,
    )

    scheduler.start()
    lifecycle.recover()
    return handler
