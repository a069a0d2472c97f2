"""Crisis Response Engine: scoring, protocols and alert escalation.

Takes indicators from the Safety Service, scores them against the
subject's recent alert history, builds an intervention protocol and
drives each alert through OPEN -> ESCALATED -> HANDLED with timers that
fire exactly once.

Endpoints:
- POST /crisis/evaluate - Evaluate a message or assessment answer
- POST /crisis/alerts/<id>/resolve - Resolve an alert
- GET /crisis/alerts/<id> - Fetch an alert
- GET /crisis/alerts/active - List unhandled alerts
- GET /crisis/stats - Alert statistics
"""

from .handler import CrisisHandler, EvaluationResult, build_default
from .classifier import SeverityClassifier
from .history import CrisisHistory, HistoryTracker
from .lifecycle import AlertLifecycleManager
from .protocol import CrisisProtocol, ProtocolBuilder
from .resources import Resource, ResourceCatalog
from .errors import AlertNotFound, CrisisEngineError, HistoryLookupFailed, TimerSchedulingFailed

__all__ = [
    "CrisisHandler",
    "EvaluationResult",
    "build_default",
    "SeverityClassifier",
    "CrisisHistory",
    "HistoryTracker",
    "AlertLifecycleManager",
    "CrisisProtocol",
    "ProtocolBuilder",
    "Resource",
    "ResourceCatalog",
    "AlertNotFound",
    "CrisisEngineError",
    "HistoryLookupFailed",
    "TimerSchedulingFailed",
]
