"""Indicator detector - layered keyword scan plus behavioral merge.

Layer 1: Keyword tiers, evaluated Critical -> High -> Medium. The first
tier with any match is reported and lower tiers are skipped.
Layer 2: Behavioral indicators supplied by the caller, merged in after
the keyword result without short-circuiting it.

Detection is pure: no state is read or written.
"""
import logging
import time
from typing import Any, Iterable, List, Optional

from wellspring.shared.models import Indicator, IndicatorSource, Severity
from .config import (
    ASSESSMENT_CRISIS_FLAGS,
    BEHAVIOR_TIERS,
    KEYWORD_TIERS,
    SafetyConfig,
)

logger = logging.getLogger(__name__)


class IndicatorDetector:
    """Scans an input unit for crisis indicators.

    An input unit is one chat message or one assessment answer.
    """

    def __init__(self, config: Optional[SafetyConfig] = None):
        self.config = config or SafetyConfig()
        self._strip_table = str.maketrans("", "", self.config.stripped_characters)

        logger.info(
            "INDICATOR_DETECTOR_INITIALIZED",
            extra={
                "pattern_version": self.config.pattern_version,
                "keyword_tiers": [tier.value for tier, _ in KEYWORD_TIERS],
                "behavior_pattern_count": len(BEHAVIOR_TIERS),
            }
        )

    def normalize(self, text: str) -> str:
        """Lower-case and drop apostrophes so "Can't" matches "cant"."""
        return text.lower().translate(self._strip_table)

    def detect(self, text: Any, behaviors: Iterable[str] = ()) -> List[Indicator]:
        """Scan text and merge caller-supplied behavioral patterns.

        Args:
            text: Message text. Empty or non-string input yields no
                keyword indicators.
            behaviors: Behavioral pattern names computed upstream

        Returns:
            Keyword indicators from the highest matching tier, followed
            by behavioral indicators in the order given
        """
        start_time = time.perf_counter()

        indicators = self._scan_keywords(text)
        indicators.extend(self.behavioral_indicators(behaviors))

        logger.debug(
            "INDICATOR_SCAN_COMPLETED",
            extra={
                "indicator_count": len(indicators),
                "highest_tier": _tier_value(highest_tier(indicators)),
                "pattern_version": self.config.pattern_version,
                "latency_ms": (time.perf_counter() - start_time) * 1000,
            }
        )
        return indicators

    def _scan_keywords(self, text: Any) -> List[Indicator]:
        if not isinstance(text, str) or not text.strip():
            logger.debug(
                "DETECTION_INPUT_INVALID",
                extra={"input_type": type(text).__name__, "action": "no_indicators"}
            )
            return []

        normalized = self.normalize(text)
        for tier, keywords in KEYWORD_TIERS:
            matches = [keyword for keyword in keywords if keyword in normalized]
            if matches:
                return [
                    Indicator(pattern=keyword, tier=tier, source=IndicatorSource.KEYWORD)
                    for keyword in matches
                ]
        return []

    def behavioral_indicators(self, behaviors: Iterable[str]) -> List[Indicator]:
        """Map behavioral pattern names to indicators.

        Unknown names are kept at LOW tier rather than dropped.
        """
        seen = set()
        indicators = []
        for name in behaviors or ():
            if not name or name in seen:
                continue
            seen.add(name)
            indicators.append(Indicator(
                pattern=name,
                tier=BEHAVIOR_TIERS.get(name, Severity.LOW),
                source=IndicatorSource.BEHAVIORAL,
            ))
        return indicators

    def detect_assessment_response(
        self,
        instrument: str,
        question_id: str,
        response: Any,
    ) -> List[Indicator]:
        """Flag a single structured assessment answer.

        Args:
            instrument: Assessment instrument, e.g. "phq9"
            question_id: Question identifier, e.g. "phq9_9"
            response: Recorded answer (score or boolean)

        Returns:
            A single CRITICAL assessment indicator if the answer is a
            crisis flag, otherwise an empty list
        """
        key = ((instrument or "").lower(), question_id or "")
        predicate = ASSESSMENT_CRISIS_FLAGS.get(key)
        if predicate is None or not predicate(response):
            return []

        logger.warning(
            "ASSESSMENT_CRISIS_FLAG",
            extra={"instrument": key[0], "question_id": key[1]}
        )
        return [Indicator(
            pattern=f"{key[0]}:{key[1]}",
            tier=Severity.CRITICAL,
            source=IndicatorSource.ASSESSMENT,
        )]


def highest_tier(indicators: Iterable[Indicator]) -> Optional[Severity]:
    """Highest tier among all indicators, or None when there are none."""
    tiers = [indicator.tier for indicator in indicators]
    return max(tiers) if tiers else None


def _tier_value(tier: Optional[Severity]) -> Optional[str]:
    return tier.value if tier else None
