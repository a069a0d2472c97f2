"""Tests for CrisisHandler - end-to-end evaluation through the lifecycle."""
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from wellspring.shared.models import AlertState, IndicatorSource, SafetyAlert, Severity
from wellspring.shared.utils import configure_pii_salt
from wellspring.services.audit_service import AuditEventKind, AuditLogger
from wellspring.services.safety_service import IndicatorDetector
from wellspring.services.crisis_engine.alert_repository import InMemoryAlertRepository
from wellspring.services.crisis_engine.classifier import SeverityClassifier
from wellspring.services.crisis_engine.config import CrisisConfig
from wellspring.services.crisis_engine.errors import AlertNotFound
from wellspring.services.crisis_engine.handler import CrisisHandler, build_default
from wellspring.services.crisis_engine.history import HistoryTracker
from wellspring.services.crisis_engine.lifecycle import AlertLifecycleManager
from wellspring.services.crisis_engine.protocol import ProtocolBuilder
from wellspring.services.crisis_engine.resources import ResourceKind


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


NOW = datetime(2026, 10, 19, 12, 0, 0)


class FakeScheduler:
    def __init__(self):
        self.jobs = {}
        self.stopped = False

    def arm(self, alert_id, level, run_date, func):
        self.jobs[(alert_id, level)] = (run_date, func)

    def cancel(self, alert_id, level):
        return self.jobs.pop((alert_id, level), None) is not None

    def cancel_all(self, alert_id):
        return sum(1 for level in (1, 2) if self.cancel(alert_id, level))

    def shutdown(self, wait=False):
        self.stopped = True


@pytest.fixture
def repository():
    return InMemoryAlertRepository()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def audit():
    audit_logger = AuditLogger()
    yield audit_logger
    audit_logger.shutdown()


@pytest.fixture
def handler(repository, scheduler, audit):
    config = CrisisConfig()
    clock = lambda: NOW
    lifecycle = AlertLifecycleManager(
        repository=repository,
        scheduler=scheduler,
        audit=audit,
        notifier=MagicMock(),
        config=config,
        clock=clock,
        sleep=lambda _: None,
    )
    return CrisisHandler(
        detector=IndicatorDetector(),
        history=HistoryTracker(repository, config, clock=clock),
        classifier=SeverityClassifier(),
        protocol_builder=ProtocolBuilder(config=config),
        lifecycle=lifecycle,
        audit=audit,
        config=config,
    )


def _seed_alerts(repository, subject_id, count, severity=Severity.MEDIUM, age=timedelta(days=1)):
    for i in range(count):
        created_at = NOW - age - timedelta(minutes=i)
        repository.put(SafetyAlert(
            id=f"alert_prior_{subject_id}_{i}",
            subject_id=subject_id,
            severity=severity,
            context="chat",
            handled=True,
            created_at=created_at,
            updated_at=created_at,
        ))


class TestExampleScenario:
    def test_critical_message_with_no_history(self, handler, repository, scheduler):
        result = handler.evaluate_input("user_123", "I want to kill myself", context="chat")

        assert result.is_crisis is True
        assert result.severity == Severity.CRITICAL
        assert result.alert_id is not None

        alert = repository.get(result.alert_id)
        assert alert.state == AlertState.OPEN
        for action in ("action:notify_handler", "action:provide_resources", "action:connect_counselor"):
            assert action in alert.actions

        run_date, _ = scheduler.jobs[(result.alert_id, 1)]
        assert run_date == alert.created_at + timedelta(minutes=5)

    def test_critical_protocol_shape(self, handler):
        result = handler.evaluate_input("user_123", "I want to kill myself")

        assert len(result.protocol.immediate_actions) == 3
        assert [s.level for s in result.protocol.escalation_path] == [1, 2]
        assert [s.timeout_minutes for s in result.protocol.escalation_path] == [5, 15]

    def test_critical_short_circuits_lower_tiers(self, handler):
        result = handler.evaluate_input(
            "user_123", "I feel hopeless and anxious and want to end my life"
        )

        assert result.severity == Severity.CRITICAL
        assert {i.tier for i in result.indicators} == {Severity.CRITICAL}


class TestNoSignal:
    def test_normal_message(self, handler, repository):
        result = handler.evaluate_input("user_123", "Had a great day today")

        assert result.is_crisis is False
        assert result.severity == Severity.LOW
        assert result.protocol is None
        assert result.alert_id is None
        assert result.resources  # resources are always offered
        assert repository.list_alerts() == []

    def test_empty_input(self, handler):
        result = handler.evaluate_input("user_123", "")
        assert result.is_crisis is False

    def test_unknown_behavior_only_is_low(self, handler):
        result = handler.evaluate_input("user_123", "ok", behaviors=["late_night_usage"])

        assert result.severity == Severity.LOW
        assert result.is_crisis is False
        assert result.indicators[0].source == IndicatorSource.BEHAVIORAL


class TestHistoryUpgrade:
    def test_six_prior_alerts_upgrade_medium(self, handler, repository):
        _seed_alerts(repository, "user_123", 6)

        result = handler.evaluate_input("user_123", "I feel so overwhelmed")

        assert result.severity == Severity.HIGH
        assert "repeated_crisis_pattern" in [i.pattern for i in result.indicators]

    def test_eleven_prior_alerts_still_high(self, handler, repository):
        _seed_alerts(repository, "user_123", 11)

        result = handler.evaluate_input("user_123", "I feel so overwhelmed")

        assert result.severity == Severity.HIGH

    def test_five_prior_alerts_no_upgrade(self, handler, repository):
        _seed_alerts(repository, "user_123", 5)

        result = handler.evaluate_input("user_123", "I feel so overwhelmed")

        assert result.severity == Severity.MEDIUM
        assert "repeated_crisis_pattern" not in [i.pattern for i in result.indicators]

    def test_alerts_outside_window_ignored(self, handler, repository):
        _seed_alerts(repository, "user_123", 8, age=timedelta(days=45))

        result = handler.evaluate_input("user_123", "I feel so overwhelmed")

        assert result.severity == Severity.MEDIUM

    def test_high_never_upgraded_to_critical(self, handler, repository):
        _seed_alerts(repository, "user_123", 11)

        result = handler.evaluate_input("user_123", "I feel hopeless")

        assert result.severity == Severity.HIGH

    def test_other_subjects_history_ignored(self, handler, repository):
        _seed_alerts(repository, "user_other", 11)

        result = handler.evaluate_input("user_123", "I feel so overwhelmed")

        assert result.severity == Severity.MEDIUM

    def test_history_failure_degrades_to_no_signal(self, handler, repository):
        _seed_alerts(repository, "user_123", 11)
        with patch.object(repository, "query_by_subject", side_effect=Exception("db down")):
            result = handler.evaluate_input("user_123", "I feel so overwhelmed")

        assert result.is_crisis is True
        assert result.severity == Severity.MEDIUM
        assert result.alert_id is not None


class TestAssessment:
    def test_phq9_item_nine_is_critical(self, handler):
        result = handler.evaluate_input(
            "user_123",
            "",
            context="assessment:phq9",
            assessment={"instrument": "phq9", "question_id": "phq9_9", "response": 2},
        )

        assert result.severity == Severity.CRITICAL
        assert result.indicators[0].source == IndicatorSource.ASSESSMENT

    def test_zero_score_is_not_flagged(self, handler):
        result = handler.evaluate_input(
            "user_123",
            "",
            assessment={"instrument": "phq9", "question_id": "phq9_9", "response": 0},
        )

        assert result.is_crisis is False


class TestResources:
    def test_high_severity_puts_hotlines_first(self, handler):
        result = handler.evaluate_input("user_123", "I feel hopeless", jurisdiction="US")

        kinds = [r.kind for r in result.resources]
        assert kinds[0] == ResourceKind.HOTLINE
        assert len(result.resources) <= 5

    def test_timezone_selects_jurisdiction(self, handler):
        result = handler.evaluate_input(
            "user_123", "I feel hopeless", timezone="Europe/London"
        )

        ids = [r.id for r in result.resources]
        assert "uk_samaritans" in ids
        assert "us_988" not in ids

    def test_explicit_jurisdiction_wins_over_timezone(self, handler):
        result = handler.evaluate_input(
            "user_123", "I feel hopeless", jurisdiction="US", timezone="Europe/London"
        )

        assert "us_988" in [r.id for r in result.resources]


class TestDegradation:
    def test_alert_failure_still_reports_crisis(self, handler, repository):
        with patch.object(repository, "put", side_effect=Exception("db down")):
            result = handler.evaluate_input("user_123", "I want to kill myself")

        assert result.is_crisis is True
        assert result.severity == Severity.CRITICAL
        assert result.protocol is not None
        assert result.resources
        assert result.alert_id is None

    def test_protocol_failure_falls_back_to_detected_severity(self, handler):
        with patch.object(handler.protocol_builder, "build", side_effect=Exception("boom")):
            result = handler.evaluate_input("user_123", "I want to kill myself")

        assert result.is_crisis is True
        assert result.severity == Severity.CRITICAL
        assert result.resources

    def test_detector_failure_falls_back_to_low_with_resources(self, handler):
        with patch.object(handler.detector, "detect", side_effect=Exception("boom")):
            result = handler.evaluate_input("user_123", "anything")

        assert result.is_crisis is False
        assert result.severity == Severity.LOW
        assert result.resources


class TestAudit:
    def test_detection_and_scoring_audited(self, handler, audit):
        handler.evaluate_input("user_123", "I feel so overwhelmed")

        kinds = [e.kind for e in audit.query()]
        assert kinds[:2] == [AuditEventKind.DETECTION, AuditEventKind.SEVERITY_SCORED]
        assert AuditEventKind.ALERT_CREATED in kinds

    def test_raw_text_not_audited(self, handler, audit):
        handler.evaluate_input("user_123", "I feel so overwhelmed")

        detection = audit.query(kind=AuditEventKind.DETECTION)[0]
        assert "I feel so overwhelmed" not in str(detection.details)
        assert len(detection.details["text_hash"]) == 64

    def test_chain_is_valid(self, handler, audit):
        handler.evaluate_input("user_123", "I want to kill myself")
        handler.evaluate_input("user_456", "hello")

        assert audit.verify_chain() is True


class TestAlertOperations:
    def test_resolve_alert(self, handler, scheduler):
        result = handler.evaluate_input("user_123", "I want to kill myself")

        alert = handler.resolve_alert(result.alert_id, "counselor_1")

        assert alert.handled is True
        assert scheduler.jobs == {}

    def test_resolve_twice_no_duplicate_audit(self, handler, audit):
        result = handler.evaluate_input("user_123", "I want to kill myself")

        handler.resolve_alert(result.alert_id, "counselor_1")
        handler.resolve_alert(result.alert_id, "counselor_1")

        assert len(audit.query(kind=AuditEventKind.ALERT_RESOLVED)) == 1

    def test_resolve_unknown(self, handler):
        with pytest.raises(AlertNotFound):
            handler.resolve_alert("alert_missing", "counselor_1")

    def test_active_alerts_and_stats(self, handler):
        first = handler.evaluate_input("user_123", "I want to kill myself")
        handler.evaluate_input("user_456", "I feel hopeless")
        handler.resolve_alert(first.alert_id, "counselor_1")

        assert len(handler.get_active_alerts()) == 1
        stats = handler.get_crisis_stats()
        assert stats["totalAlerts"] == 2
        assert stats["activeAlerts"] == 1

    def test_get_alert(self, handler):
        result = handler.evaluate_input("user_123", "I want to kill myself")

        assert handler.get_alert(result.alert_id).id == result.alert_id
        assert handler.get_alert("alert_missing") is None

    def test_cooldown_after_critical(self, handler):
        assert handler.is_in_cooldown("user_123") is False

        handler.evaluate_input("user_123", "I want to kill myself")

        assert handler.is_in_cooldown("user_123") is True

    def test_medium_alert_does_not_start_cooldown(self, handler):
        handler.evaluate_input("user_123", "I feel so overwhelmed")

        assert handler.is_in_cooldown("user_123") is False

    def test_shutdown(self, handler, scheduler):
        with patch.object(handler.lifecycle, "shutdown") as lifecycle_shutdown:
            handler.shutdown()

        assert scheduler.stopped is True
        lifecycle_shutdown.assert_called_once()


class TestEvaluationResult:
    def test_to_dict(self, handler):
        data = handler.evaluate_input("user_123", "I want to kill myself").to_dict()

        assert data["isCrisis"] is True
        assert data["severity"] == "critical"
        assert data["alertId"].startswith("alert_")
        assert data["protocol"]["severity"] == "critical"
        assert data["indicators"][0]["pattern"] == "kill myself"


class TestBuildDefault:
    def test_memory_wiring(self):
        with patch(
            "wellspring.services.crisis_engine.handler.EscalationScheduler"
        ) as scheduler_cls:
            built = build_default(CrisisConfig(notifications_enabled=False))

        scheduler_cls.return_value.start.assert_called_once()
        assert isinstance(built.lifecycle.repository, InMemoryAlertRepository)
        built.audit.shutdown()

    def test_postgres_wiring(self):
        with patch(
            "wellspring.services.crisis_engine.handler.EscalationScheduler"
        ), patch(
            "wellspring.services.crisis_engine.handler.get_connection_manager"
        ) as get_manager, patch(
            "wellspring.services.crisis_engine.handler.PostgresAlertRepository"
        ) as repo_cls:
            repo_cls.return_value.list_alerts.return_value = []
            built = build_default(CrisisConfig(alert_store="postgres", notifications_enabled=False))

        repo_cls.assert_called_once_with(get_manager.return_value)
        assert built.audit.repository.connection_manager is get_manager.return_value
        built.audit.shutdown()
