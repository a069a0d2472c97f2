"""Tests for IndicatorDetector - safety-critical code.

Covers tier short-circuiting, behavioral merge, and the assessment
answer flags.
"""
import pytest

from wellspring.shared.models import IndicatorSource, Severity
from wellspring.shared.utils import configure_pii_salt
from wellspring.services.safety_service.scanner import IndicatorDetector, highest_tier
from wellspring.services.safety_service.config import (
    CRITICAL_KEYWORDS,
    HIGH_KEYWORDS,
    MEDIUM_KEYWORDS,
    SafetyConfig,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def detector():
    return IndicatorDetector()


class TestNoSignal:
    """Inputs that must produce no indicators."""

    def test_normal_message(self, detector):
        assert detector.detect("I had a good day at school today") == []

    def test_empty_message(self, detector):
        assert detector.detect("") == []

    def test_whitespace_message(self, detector):
        assert detector.detect("   \n\t") == []

    def test_non_text_input(self, detector):
        assert detector.detect(None) == []
        assert detector.detect(42) == []

    def test_highest_tier_of_nothing_is_none(self, detector):
        assert highest_tier(detector.detect("")) is None


class TestCriticalTier:
    def test_explicit_statement(self, detector):
        indicators = detector.detect("I want to kill myself")

        assert [i.pattern for i in indicators] == ["kill myself"]
        assert indicators[0].tier == Severity.CRITICAL
        assert indicators[0].source == IndicatorSource.KEYWORD

    def test_case_insensitive(self, detector):
        indicators = detector.detect("I WANT TO END IT ALL")

        assert highest_tier(indicators) == Severity.CRITICAL

    def test_critical_short_circuits_lower_tiers(self, detector):
        indicators = detector.detect(
            "I'm depressed, hopeless and worthless and I want to end it all"
        )

        assert [i.pattern for i in indicators] == ["end it all"]
        assert all(i.tier == Severity.CRITICAL for i in indicators)

    @pytest.mark.parametrize("keyword", CRITICAL_KEYWORDS)
    def test_every_critical_keyword_is_detected(self, detector, keyword):
        indicators = detector.detect(f"lately {keyword} is all I think about")

        assert highest_tier(indicators) == Severity.CRITICAL


class TestHighTier:
    def test_all_matches_in_tier_reported_in_table_order(self, detector):
        indicators = detector.detect("I feel hopeless and worthless")

        assert [i.pattern for i in indicators] == ["worthless", "hopeless"]
        assert all(i.tier == Severity.HIGH for i in indicators)

    def test_apostrophes_are_ignored(self, detector):
        indicators = detector.detect("I can't go on like this")

        assert [i.pattern for i in indicators] == ["cant go on"]

    def test_curly_apostrophe(self, detector):
        indicators = detector.detect("I can’t go on")

        assert highest_tier(indicators) == Severity.HIGH

    def test_high_short_circuits_medium(self, detector):
        indicators = detector.detect("I'm anxious and nothing matters")

        assert [i.pattern for i in indicators] == ["nothing matters"]

    @pytest.mark.parametrize("keyword", HIGH_KEYWORDS)
    def test_every_high_keyword_is_detected(self, detector, keyword):
        assert highest_tier(detector.detect(keyword)) == Severity.HIGH


class TestMediumTier:
    def test_distress_keywords(self, detector):
        indicators = detector.detect("I'm so depressed and anxious")

        assert [i.pattern for i in indicators] == ["depressed", "anxious"]
        assert highest_tier(indicators) == Severity.MEDIUM

    def test_cant_cope(self, detector):
        assert [i.pattern for i in detector.detect("I just can't cope")] == ["cant cope"]

    @pytest.mark.parametrize("keyword", MEDIUM_KEYWORDS)
    def test_every_medium_keyword_is_detected(self, detector, keyword):
        assert highest_tier(detector.detect(keyword)) == Severity.MEDIUM


class TestBehavioralIndicators:
    def test_behaviors_merge_without_short_circuit(self, detector):
        indicators = detector.detect("I'm so depressed", behaviors=["isolation_pattern"])

        assert [(i.pattern, i.source) for i in indicators] == [
            ("depressed", IndicatorSource.KEYWORD),
            ("isolation_pattern", IndicatorSource.BEHAVIORAL),
        ]
        assert indicators[1].tier == Severity.CRITICAL

    def test_behaviors_alone(self, detector):
        indicators = detector.detect("", behaviors=["withdrawal_from_support"])

        assert len(indicators) == 1
        assert indicators[0].source == IndicatorSource.BEHAVIORAL
        assert indicators[0].tier == Severity.HIGH

    def test_unknown_behavior_is_low(self, detector):
        indicators = detector.behavioral_indicators(["late_night_activity"])

        assert indicators[0].tier == Severity.LOW

    def test_duplicate_behaviors_collapsed(self, detector):
        indicators = detector.behavioral_indicators(["seeking_support", "seeking_support"])

        assert len(indicators) == 1


class TestAssessmentFlags:
    def test_phq9_item_nine_positive(self, detector):
        indicators = detector.detect_assessment_response("phq9", "phq9_9", 2)

        assert len(indicators) == 1
        assert indicators[0].pattern == "phq9:phq9_9"
        assert indicators[0].tier == Severity.CRITICAL
        assert indicators[0].source == IndicatorSource.ASSESSMENT

    def test_phq9_item_nine_zero(self, detector):
        assert detector.detect_assessment_response("phq9", "phq9_9", 0) == []

    def test_phq9_other_item_not_flagged(self, detector):
        assert detector.detect_assessment_response("phq9", "phq9_2", 3) == []

    def test_crisis_risk_plan_answered_yes(self, detector):
        indicators = detector.detect_assessment_response("crisis_risk", "crisis_3", True)

        assert highest_tier(indicators) == Severity.CRITICAL

    def test_crisis_risk_answered_no(self, detector):
        assert detector.detect_assessment_response("crisis_risk", "crisis_2", False) == []

    def test_boolean_is_not_a_phq9_score(self, detector):
        assert detector.detect_assessment_response("phq9", "phq9_9", True) == []


class TestDeterminism:
    def test_same_input_same_output(self, detector):
        text = "I feel like a burden and I'm scared"

        assert detector.detect(text) == detector.detect(text)

    def test_custom_pattern_version(self):
        detector = IndicatorDetector(SafetyConfig(pattern_version="test"))

        assert detector.config.pattern_version == "test"
