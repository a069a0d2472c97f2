"""Severity and indicator domain models.

Severity is the ordinal risk vocabulary shared by detection tiers and
subject-level risk after history adjustment. "No signal" is represented
as None, never as Severity.LOW.
"""
from dataclasses import dataclass
from enum import Enum


class Severity(Enum):
    """Ordinal risk levels: LOW < MEDIUM < HIGH < CRITICAL."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class IndicatorSource(Enum):
    """Where an indicator came from."""
    KEYWORD = "keyword"          # Free-text keyword tier match
    BEHAVIORAL = "behavioral"    # Pre-computed by surrounding logic
    ASSESSMENT = "assessment"    # Flagged structured assessment answer


class HistoryPattern(Enum):
    """Named pattern over a subject's recent alerts.

    Mutually exclusive, evaluated in declaration order.
    """
    FREQUENT_CRISIS = "frequent_crisis"  # > 10 alerts in window
    ESCALATING = "escalating"            # > 5 alerts in window
    RECENT_CRISIS = "recent_crisis"      # Any alert in the last 7 days


@dataclass(frozen=True)
class Indicator:
    """A detected signal with its severity tier.

    Immutable; produced by detection and never persisted standalone.
    """
    pattern: str
    tier: Severity
    source: IndicatorSource = IndicatorSource.KEYWORD

    @property
    def is_tiered(self) -> bool:
        """Keyword and assessment indicators set the base severity."""
        return self.source is not IndicatorSource.BEHAVIORAL

    def to_dict(self) -> dict:
        return {
            "pattern": self.pattern,
            "tier": self.tier.value,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Indicator":
        return cls(
            pattern=data["pattern"],
            tier=Severity(data["tier"]),
            source=IndicatorSource(data.get("source", IndicatorSource.KEYWORD.value)),
        )

