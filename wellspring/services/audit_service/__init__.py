"""Audit Service: hash-chained trail of crisis decisions.

Every detection, severity score, alert transition and escalation is
recorded as an AuditEntry whose hash covers the previous entry, so the
trail can be verified end to end. Storage is PostgreSQL (append-only
table) or process memory.
"""

from .audit_logger import AuditLogger, AuditEvent, AuditEventKind, AuditEntry
from .audit_repository import AuditRepository

__all__ = [
    "AuditLogger",
    "AuditEvent",
    "AuditEventKind",
    "AuditEntry",
    "AuditRepository",
]
