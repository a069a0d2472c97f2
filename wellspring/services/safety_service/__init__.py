"""Safety Service: deterministic crisis indicator detection.

Every chat message and assessment answer passes through the detector
before the crisis engine scores it.

Components:
- scanner.py: IndicatorDetector with tiered keyword scan and behavioral merge
- config.py: Keyword tiers, behavioral patterns, assessment flags

Usage:
    from wellspring.services.safety_service import IndicatorDetector
    detector = IndicatorDetector()
    indicators = detector.detect("I can't cope anymore")
"""

from .scanner import IndicatorDetector, highest_tier
from .config import (
    SafetyConfig,
    KEYWORD_TIERS,
    BEHAVIOR_TIERS,
    REPEATED_CRISIS_PATTERN,
)

__all__ = [
    "IndicatorDetector",
    "highest_tier",
    "SafetyConfig",
    "KEYWORD_TIERS",
    "BEHAVIOR_TIERS",
    "REPEATED_CRISIS_PATTERN",
]
