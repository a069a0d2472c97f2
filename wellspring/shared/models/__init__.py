"""Shared domain models for Wellspring services."""
from .risk import (
    Severity,
    IndicatorSource,
    HistoryPattern,
    Indicator,
)
from .alert import AlertState, SafetyAlert

__all__ = [
    "Severity",
    "IndicatorSource",
    "HistoryPattern",
    "Indicator",
    "AlertState",
    "SafetyAlert",
]
