"""Protocol builder - immediate actions, follow-ups, resources, escalation path.

A CrisisProtocol is computed per detection and never persisted. The
action table is fixed per severity; the escalation path is the same two
steps for every severity.
"""
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from wellspring.shared.models import Indicator, IndicatorSource, Severity
from .config import CrisisConfig
from .resources import KIND_PRIORITY, Resource, ResourceCatalog

logger = logging.getLogger(__name__)


class ActionType(Enum):
    NOTIFY_HANDLER = "notify_handler"
    PROVIDE_RESOURCES = "provide_resources"
    CONNECT_COUNSELOR = "connect_counselor"


# Action priorities
IMMEDIATE = 1
URGENT = 2
STANDARD = 3


@dataclass(frozen=True)
class Action:
    id: str
    type: ActionType
    priority: int
    automated: bool
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority,
            "automated": self.automated,
            "description": self.description,
        }


@dataclass(frozen=True)
class EscalationStep:
    """A timed rule that fires if the alert is still unhandled.

    timeout_minutes is measured from alert creation, not from the
    previous step.
    """
    level: int
    condition: str
    action: str
    notify_targets: FrozenSet[str]
    timeout_minutes: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "condition": self.condition,
            "action": self.action,
            "notifyTargets": sorted(self.notify_targets),
            "timeoutMinutes": self.timeout_minutes,
        }


@dataclass(frozen=True)
class CrisisProtocol:
    id: str
    severity: Severity
    trigger_type: str
    indicators: Tuple[Indicator, ...] = ()
    immediate_actions: Tuple[Action, ...] = ()
    follow_up_actions: Tuple[Action, ...] = ()
    resources: Tuple[Resource, ...] = ()
    escalation_path: Tuple[EscalationStep, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "triggerType": self.trigger_type,
            "indicators": [i.to_dict() for i in self.indicators],
            "immediateActions": [a.to_dict() for a in self.immediate_actions],
            "followUpActions": [a.to_dict() for a in self.follow_up_actions],
            "resources": [r.to_dict() for r in self.resources],
            "escalationPath": [s.to_dict() for s in self.escalation_path],
        }


# (type, priority, automated, description)
_ActionSpec = Tuple[ActionType, int, bool, str]

_CRITICAL_IMMEDIATE: Tuple[_ActionSpec, ...] = (
    (ActionType.NOTIFY_HANDLER, IMMEDIATE, True, "Alert crisis response team immediately"),
    (ActionType.PROVIDE_RESOURCES, IMMEDIATE, True, "Display crisis hotlines and chat support"),
    (ActionType.CONNECT_COUNSELOR, IMMEDIATE, True, "Attempt to connect with available crisis counselor"),
)
_CRITICAL_FOLLOW_UP: Tuple[_ActionSpec, ...] = (
    (ActionType.CONNECT_COUNSELOR, URGENT, False, "Schedule follow-up with mental health professional"),
)
_HIGH_IMMEDIATE: Tuple[_ActionSpec, ...] = (
    (ActionType.PROVIDE_RESOURCES, URGENT, True, "Show relevant support resources"),
    (ActionType.NOTIFY_HANDLER, URGENT, True, "Flag for handler review"),
)
_HIGH_FOLLOW_UP: Tuple[_ActionSpec, ...] = (
    (ActionType.CONNECT_COUNSELOR, STANDARD, False, "Offer connection to peer support"),
)
_STANDARD_IMMEDIATE: Tuple[_ActionSpec, ...] = (
    (ActionType.PROVIDE_RESOURCES, STANDARD, True, "Suggest helpful resources"),
)

ACTION_TABLE: Dict[Severity, Tuple[Tuple[_ActionSpec, ...], Tuple[_ActionSpec, ...]]] = {
    Severity.CRITICAL: (_CRITICAL_IMMEDIATE, _CRITICAL_FOLLOW_UP),
    Severity.HIGH: (_HIGH_IMMEDIATE, _HIGH_FOLLOW_UP),
    Severity.MEDIUM: (_STANDARD_IMMEDIATE, ()),
    Severity.LOW: (_STANDARD_IMMEDIATE, ()),
}

ESCALATION_PATH: Tuple[EscalationStep, ...] = (
    EscalationStep(
        level=1,
        condition="No resolution within 5 minutes",
        action="Escalate to senior handler",
        notify_targets=frozenset({"senior_handler"}),
        timeout_minutes=5,
    ),
    EscalationStep(
        level=2,
        condition="No resolution within 15 minutes",
        action="Contact emergency services if location is known",
        notify_targets=frozenset({"crisis_team", "admin"}),
        timeout_minutes=15,
    ),
)


def escalation_step(level: int) -> Optional[EscalationStep]:
    """Step for a 1-based level, or None past the end of the path."""
    if 1 <= level <= len(ESCALATION_PATH):
        return ESCALATION_PATH[level - 1]
    return None


def _trigger_type(indicators: Iterable[Indicator]) -> str:
    sources = {i.source for i in indicators}
    for source in (IndicatorSource.KEYWORD, IndicatorSource.ASSESSMENT, IndicatorSource.BEHAVIORAL):
        if source in sources:
            return source.value
    return "none"


class ProtocolBuilder:
    """Assembles a CrisisProtocol for a severity and its indicators."""

    def __init__(
        self,
        catalog: Optional[ResourceCatalog] = None,
        config: Optional[CrisisConfig] = None,
    ):
        self.catalog = catalog or ResourceCatalog()
        self.config = config or CrisisConfig()

    def resources_for(
        self,
        severity: Severity,
        language: Optional[str] = None,
        jurisdiction: Optional[str] = None,
    ) -> List[Resource]:
        """Catalog matches, hotlines first for HIGH/CRITICAL, at most max_resources."""
        resources = self.catalog.lookup(
            language or self.config.default_language,
            jurisdiction or self.config.default_jurisdiction,
        )
        if severity >= Severity.HIGH:
            # sorted() is stable, so catalog order is kept within a kind rank
            resources = sorted(resources, key=lambda r: KIND_PRIORITY.get(r.kind, 5))
        return resources[:self.config.max_resources]

    def build(
        self,
        severity: Severity,
        indicators: Iterable[Indicator],
        language: Optional[str] = None,
        jurisdiction: Optional[str] = None,
    ) -> CrisisProtocol:
        indicators = tuple(indicators)
        immediate_specs, follow_up_specs = ACTION_TABLE[severity]

        protocol = CrisisProtocol(
            id=f"protocol_{uuid.uuid4().hex[:12]}",
            severity=severity,
            trigger_type=_trigger_type(indicators),
            indicators=indicators,
            immediate_actions=self._actions(severity, "immediate", immediate_specs),
            follow_up_actions=self._actions(severity, "follow_up", follow_up_specs),
            resources=tuple(self.resources_for(severity, language, jurisdiction)),
            escalation_path=ESCALATION_PATH,
        )

        logger.info(
            "CRISIS_PROTOCOL_BUILT",
            extra={
                "protocol_id": protocol.id,
                "severity": severity.value,
                "immediate_actions": len(protocol.immediate_actions),
                "follow_up_actions": len(protocol.follow_up_actions),
                "resource_count": len(protocol.resources),
            }
        )
        return protocol

    def _actions(
        self,
        severity: Severity,
        phase: str,
        specs: Iterable[_ActionSpec],
    ) -> Tuple[Action, ...]:
        return tuple(
            Action(
                id=f"{severity.value}_{phase}_{index}",
                type=action_type,
                priority=priority,
                automated=automated,
                description=description,
            )
            for index, (action_type, priority, automated, description) in enumerate(specs, start=1)
        )
