"""SafetyAlert - the persisted unit of crisis state.

The field names emitted by to_dict() are read by handlers and audits;
keep them stable.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .risk import Indicator, Severity


class AlertState(Enum):
    """Lifecycle states: OPEN -> ESCALATED(level) -> HANDLED (terminal)."""
    OPEN = "open"
    ESCALATED = "escalated"
    HANDLED = "handled"


@dataclass
class SafetyAlert:
    """Mutable alert record.

    Only the Alert Lifecycle Manager mutates an unhandled alert. Once
    handled is True it never reverts; a new detection opens a new alert.
    """
    id: str
    subject_id: str
    severity: Severity
    context: str
    indicators: List[Indicator] = field(default_factory=list)
    handled: bool = False
    handled_by: Optional[str] = None
    handled_at: Optional[datetime] = None
    actions: List[str] = field(default_factory=list)
    escalation_level: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def state(self) -> AlertState:
        if self.handled:
            return AlertState.HANDLED
        if self.escalation_level > 0:
            return AlertState.ESCALATED
        return AlertState.OPEN

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the externally visible alert shape."""
        return {
            "id": self.id,
            "subjectId": self.subject_id,
            "severity": self.severity.value,
            "context": self.context,
            "indicators": [i.to_dict() for i in self.indicators],
            "handled": self.handled,
            "handledBy": self.handled_by,
            "handledAt": self.handled_at.isoformat() if self.handled_at else None,
            "actions": list(self.actions),
            "escalationLevel": self.escalation_level,
            "state": self.state.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
