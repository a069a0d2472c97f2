"""Indicator pattern tables and scanner configuration.

Keyword tiers are evaluated Critical -> High -> Medium; see scanner.py.
Keywords are matched against lower-cased text with apostrophes removed,
so they are written without apostrophes ("cant go on").
"""
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Tuple, Any

from wellspring.shared.models import Severity


@dataclass(frozen=True)
class SafetyConfig:
    """Configuration for indicator scanning."""

    # Version tracking for audit trail
    pattern_version: str = "2026.10.01"

    # Characters stripped before matching
    stripped_characters: str = "'’‘`"


# Ordered so that table order is report order within a tier.
CRITICAL_KEYWORDS: Tuple[str, ...] = (
    "kill myself",
    "end my life",
    "suicide",
    "want to die",
    "better off dead",
    "no reason to live",
    "final goodbye",
    "last words",
    "end it all",
    "overdose",
)

HIGH_KEYWORDS: Tuple[str, ...] = (
    "self harm",
    "cutting",
    "hurt myself",
    "worthless",
    "hopeless",
    "no one cares",
    "burden",
    "alone forever",
    "cant go on",
    "nothing matters",
)

MEDIUM_KEYWORDS: Tuple[str, ...] = (
    "depressed",
    "anxious",
    "panic",
    "scared",
    "overwhelmed",
    "cant cope",
    "breaking down",
    "falling apart",
    "losing control",
)

KEYWORD_TIERS: Tuple[Tuple[Severity, Tuple[str, ...]], ...] = (
    (Severity.CRITICAL, CRITICAL_KEYWORDS),
    (Severity.HIGH, HIGH_KEYWORDS),
    (Severity.MEDIUM, MEDIUM_KEYWORDS),
)


# Behavioral patterns are computed by surrounding logic (chat history,
# engagement tracking) and passed in by name.
CRITICAL_BEHAVIORS: FrozenSet[str] = frozenset({
    "repeated_crisis_messages",
    "isolation_pattern",
    "goodbye_messages",
    "giving_away_possessions",
})

HIGH_BEHAVIORS: FrozenSet[str] = frozenset({
    "withdrawal_from_support",
    "mood_decline_pattern",
    "substance_mentions",
    "relationship_crisis",
})

MEDIUM_BEHAVIORS: FrozenSet[str] = frozenset({
    "seeking_support",
    "expressing_distress",
    "asking_for_help",
})

BEHAVIOR_TIERS: Dict[str, Severity] = {
    **{name: Severity.MEDIUM for name in MEDIUM_BEHAVIORS},
    **{name: Severity.HIGH for name in HIGH_BEHAVIORS},
    **{name: Severity.CRITICAL for name in CRITICAL_BEHAVIORS},
}

# Added by the crisis handler when history upgrades a detection
REPEATED_CRISIS_PATTERN = "repeated_crisis_pattern"


def _positive_score(response: Any) -> bool:
    return isinstance(response, (int, float)) and not isinstance(response, bool) and response >= 1


def _answered_yes(response: Any) -> bool:
    return response is True


# (instrument, question_id) -> predicate over the recorded answer.
# PHQ-9 item 9 asks about thoughts of self-harm; crisis_risk items 2 and 3
# ask about suicidal thoughts and plans.
ASSESSMENT_CRISIS_FLAGS: Dict[Tuple[str, str], Callable[[Any], bool]] = {
    ("phq9", "phq9_9"): _positive_score,
    ("crisis_risk", "crisis_2"): _answered_yes,
    ("crisis_risk", "crisis_3"): _answered_yes,
}
