"""Severity classifier - indicator tiers plus history signal."""
import logging
from typing import Iterable, Optional

from wellspring.shared.models import HistoryPattern, Indicator, Severity

logger = logging.getLogger(__name__)

# Patterns that upgrade a MEDIUM detection to HIGH
UPGRADE_PATTERNS = frozenset({HistoryPattern.FREQUENT_CRISIS, HistoryPattern.ESCALATING})


class SeverityClassifier:
    """Combines matched indicators and a history pattern into one level.

    The history upgrade is deliberately narrow: MEDIUM -> HIGH only.
    LOW is never upgraded, HIGH is never raised to CRITICAL, and
    nothing is downgraded.
    """

    def base_severity(self, indicators: Iterable[Indicator]) -> Optional[Severity]:
        """Highest keyword/assessment tier; LOW if only behavioral; None if empty."""
        indicators = list(indicators)
        if not indicators:
            return None

        tiers = [i.tier for i in indicators if i.is_tiered]
        return max(tiers) if tiers else Severity.LOW

    def should_upgrade(
        self,
        base: Optional[Severity],
        history_pattern: Optional[HistoryPattern],
    ) -> bool:
        return base == Severity.MEDIUM and history_pattern in UPGRADE_PATTERNS

    def classify(
        self,
        indicators: Iterable[Indicator],
        history_pattern: Optional[HistoryPattern] = None,
    ) -> Optional[Severity]:
        """Final severity for one detection, or None for no signal."""
        base = self.base_severity(indicators)

        if self.should_upgrade(base, history_pattern):
            logger.info(
                "SEVERITY_UPGRADED_BY_HISTORY",
                extra={
                    "from": base.value,
                    "to": Severity.HIGH.value,
                    "history_pattern": history_pattern.value,
                }
            )
            return Severity.HIGH

        return base
