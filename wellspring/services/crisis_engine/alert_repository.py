"""Alert storage - get/put/query-by-subject-and-window.

InMemoryAlertRepository is the development and test backend;
PostgresAlertRepository stores alerts in the safety_alerts table.
Both return copies, so an alert is only visible to readers once put().
"""
import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from wellspring.shared.database import BaseRepository, ConnectionManager
from wellspring.shared.models import Indicator, SafetyAlert, Severity

logger = logging.getLogger(__name__)


class AlertRepository(ABC):
    """Storage interface used by the history tracker and lifecycle manager."""

    @abstractmethod
    def get(self, alert_id: str) -> Optional[SafetyAlert]:
        """Alert by id, or None."""

    @abstractmethod
    def put(self, alert: SafetyAlert) -> SafetyAlert:
        """Insert or replace an alert."""

    @abstractmethod
    def query_by_subject(
        self,
        subject_id: str,
        since: Optional[datetime] = None,
    ) -> List[SafetyAlert]:
        """Alerts for a subject created at or after `since`, newest first."""

    @abstractmethod
    def list_alerts(self, handled: Optional[bool] = None) -> List[SafetyAlert]:
        """All alerts, optionally filtered by handled flag, newest first."""


class InMemoryAlertRepository(AlertRepository):
    """Thread-safe dictionary-backed store."""

    def __init__(self):
        self._alerts: Dict[str, SafetyAlert] = {}
        self._lock = threading.Lock()

    def get(self, alert_id: str) -> Optional[SafetyAlert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return copy.deepcopy(alert) if alert else None

    def put(self, alert: SafetyAlert) -> SafetyAlert:
        with self._lock:
            self._alerts[alert.id] = copy.deepcopy(alert)
        return alert

    def query_by_subject(
        self,
        subject_id: str,
        since: Optional[datetime] = None,
    ) -> List[SafetyAlert]:
        with self._lock:
            matches = [
                copy.deepcopy(a) for a in self._alerts.values()
                if a.subject_id == subject_id and (since is None or a.created_at >= since)
            ]
        return sorted(matches, key=lambda a: a.created_at, reverse=True)

    def list_alerts(self, handled: Optional[bool] = None) -> List[SafetyAlert]:
        with self._lock:
            matches = [
                copy.deepcopy(a) for a in self._alerts.values()
                if handled is None or a.handled == handled
            ]
        return sorted(matches, key=lambda a: a.created_at, reverse=True)


class PostgresAlertRepository(BaseRepository[SafetyAlert], AlertRepository):
    """safety_alerts table.

    Columns (in order): id, subject_id, severity, context, indicators,
    handled, handled_by, handled_at, actions, escalation_level,
    created_at, updated_at. indicators and actions are JSONB.
    """

    TABLE_NAME = "safety_alerts"

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, self.TABLE_NAME)

    def _row_to_entity(self, row: tuple) -> SafetyAlert:
        indicators = _load_json(row[4])
        actions = _load_json(row[8])
        return SafetyAlert(
            id=row[0],
            subject_id=row[1],
            severity=Severity(row[2]),
            context=row[3],
            indicators=[Indicator.from_dict(item) for item in indicators],
            handled=bool(row[5]),
            handled_by=row[6],
            handled_at=row[7],
            actions=list(actions),
            escalation_level=int(row[9] or 0),
            created_at=row[10],
            updated_at=row[11],
        )

    def _entity_to_params(self, entity: SafetyAlert) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "subject_id": entity.subject_id,
            "severity": entity.severity.value,
            "context": entity.context,
            "indicators": json.dumps([i.to_dict() for i in entity.indicators]),
            "handled": entity.handled,
            "handled_by": entity.handled_by,
            "handled_at": entity.handled_at,
            "actions": json.dumps(entity.actions),
            "escalation_level": entity.escalation_level,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }

    def get(self, alert_id: str) -> Optional[SafetyAlert]:
        return self.find_by_id(alert_id)

    def put(self, alert: SafetyAlert) -> SafetyAlert:
        return self.save(alert)

    def query_by_subject(
        self,
        subject_id: str,
        since: Optional[datetime] = None,
    ) -> List[SafetyAlert]:
        if since is None:
            return self.find_where("subject_id = %s", (subject_id,))
        return self.find_where("subject_id = %s AND created_at >= %s", (subject_id, since))

    def list_alerts(self, handled: Optional[bool] = None) -> List[SafetyAlert]:
        if handled is None:
            return self.find_where("1=1", ())
        return self.find_where("handled = %s", (handled,))


def _load_json(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value
