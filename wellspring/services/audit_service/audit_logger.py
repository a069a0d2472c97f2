"""Audit logger - hash-chained trail of crisis decisions.

Every detection, scoring, alert transition and escalation emits an
AuditEvent. record() is fire-and-forget: it chains the entry in memory,
hands persistence to a single background writer and never raises.
"""
import hashlib
import json
import logging
import threading
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from wellspring.shared.utils import hash_pii

if TYPE_CHECKING:
    from .audit_repository import AuditRepository

logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"

# Entries kept in memory when a repository holds the full trail
DEFAULT_MEMORY_TAIL = 1000


class AuditEventKind(Enum):
    DETECTION = "detection"
    SEVERITY_SCORED = "severity_scored"
    ALERT_CREATED = "alert_created"
    PROTOCOL_EXECUTED = "protocol_executed"
    ALERT_ESCALATED = "alert_escalated"
    ALERT_RESOLVED = "alert_resolved"
    TIMER_SCHEDULING_FAILED = "timer_scheduling_failed"


@dataclass(frozen=True)
class AuditEvent:
    """What happened, as reported by the crisis engine.

    subject_id is raw here; it is hashed before the entry is chained.
    """
    kind: AuditEventKind
    subject_id: str
    alert_id: Optional[str] = None
    severity: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def critical(self) -> bool:
        return bool(self.details.get("critical"))


@dataclass(frozen=True)
class AuditEntry:
    """Immutable, chained audit record as stored."""
    entry_id: str
    timestamp: datetime
    kind: AuditEventKind
    subject_id_hash: str
    alert_id: Optional[str]
    severity: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""
    entry_hash: str = ""

    def compute_hash(self) -> str:
        """SHA-256 over every field except entry_hash."""
        content = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "subject_id_hash": self.subject_id_hash,
            "alert_id": self.alert_id,
            "severity": self.severity,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        content_str = json.dumps(content, sort_keys=True, default=str)
        return hashlib.sha256(content_str.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entryId": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "subjectIdHash": self.subject_id_hash,
            "alertId": self.alert_id,
            "severity": self.severity,
            "details": self.details,
            "previousHash": self.previous_hash,
            "entryHash": self.entry_hash,
        }


class AuditLogger:
    """Chains audit entries and persists them off the caller's thread.

    Entries are kept in memory in chain order for query() and
    verify_chain(). With a repository, each entry is also written through a
    single-worker executor so storage order matches chain order, and memory
    holds only the most recent `memory_tail` entries. The full trail is then
    read through the repository.
    """

    def __init__(
        self,
        repository: Optional["AuditRepository"] = None,
        memory_tail: int = DEFAULT_MEMORY_TAIL,
    ):
        self.repository = repository
        self._entries: "deque[AuditEntry]" = deque(
            maxlen=memory_tail if repository is not None else None
        )
        # previous_hash of the oldest entry still in memory
        self._tail_anchor: str = GENESIS_HASH
        self._last_hash: str = GENESIS_HASH
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit-writer")

        logger.info(
            "AUDIT_LOGGER_INITIALIZED",
            extra={"persistent": repository is not None}
        )

    def record(self, event: AuditEvent) -> Optional[AuditEntry]:
        """Chain and persist an event.

        Returns:
            The chained AuditEntry, or None if the event could not be recorded
        """
        try:
            entry = self._chain(event)
        except Exception as e:
            logger.error(
                "AUDIT_RECORD_FAILED",
                extra={
                    "kind": getattr(event.kind, "value", str(event.kind)),
                    "alert_id": event.alert_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return None

        log_extra = {
            "entry_id": entry.entry_id,
            "kind": entry.kind.value,
            "alert_id": entry.alert_id,
            "severity": entry.severity,
            "entry_hash": entry.entry_hash[:16],  # Truncated for logs
        }
        if event.critical:
            logger.critical("AUDIT_CRITICAL_EVENT", extra=log_extra)
        else:
            logger.info("AUDIT_ENTRY_CREATED", extra=log_extra)

        if self.repository is not None:
            try:
                self._executor.submit(self._persist, entry)
            except RuntimeError as e:
                # Executor already shut down
                logger.error(
                    "AUDIT_PERSIST_FAILED",
                    extra={"entry_id": entry.entry_id, "error": str(e)}
                )
        return entry

    def _chain(self, event: AuditEvent) -> AuditEntry:
        subject_hash = hash_pii(event.subject_id) if event.subject_id else ""
        with self._lock:
            entry = AuditEntry(
                entry_id=f"audit_{uuid.uuid4().hex[:16]}",
                timestamp=event.timestamp,
                kind=event.kind,
                subject_id_hash=subject_hash,
                alert_id=event.alert_id,
                severity=event.severity,
                details=dict(event.details),
                previous_hash=self._last_hash,
            )
            entry = AuditEntry(
                entry_id=entry.entry_id,
                timestamp=entry.timestamp,
                kind=entry.kind,
                subject_id_hash=entry.subject_id_hash,
                alert_id=entry.alert_id,
                severity=entry.severity,
                details=entry.details,
                previous_hash=entry.previous_hash,
                entry_hash=entry.compute_hash(),
            )
            if self._entries.maxlen and len(self._entries) == self._entries.maxlen:
                self._tail_anchor = self._entries[0].entry_hash
            self._entries.append(entry)
            self._last_hash = entry.entry_hash
        return entry

    def _persist(self, entry: AuditEntry) -> None:
        try:
            self.repository.append(entry)
        except Exception as e:
            logger.error(
                "AUDIT_PERSIST_FAILED",
                extra={
                    "entry_id": entry.entry_id,
                    "kind": entry.kind.value,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every write submitted so far has completed."""
        try:
            # Single worker: this runs after every earlier submission
            self._executor.submit(lambda: None).result(timeout=timeout)
        except RuntimeError:
            pass

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        logger.info("AUDIT_LOGGER_SHUTDOWN", extra={"entry_count": len(self._entries)})

    def verify_chain(self) -> bool:
        """Verify integrity of the in-memory chain.

        With a repository this covers the retained tail, linked from the
        last evicted entry.

        Returns:
            True if chain is valid, False if tampered
        """
        with self._lock:
            entries = list(self._entries)
            anchor = self._tail_anchor
        return verify_entries(entries, anchor)

    def query(
        self,
        kind: Optional[AuditEventKind] = None,
        alert_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """In-memory entries, in chain order, matching every given filter."""
        with self._lock:
            results = list(self._entries)

        if kind:
            results = [e for e in results if e.kind == kind]
        if alert_id:
            results = [e for e in results if e.alert_id == alert_id]
        if subject_id:
            subject_hash = hash_pii(subject_id)
            results = [e for e in results if e.subject_id_hash == subject_hash]
        if start_date:
            results = [e for e in results if e.timestamp >= start_date]
        if end_date:
            results = [e for e in results if e.timestamp <= end_date]

        return results


def verify_entries(entries: List[AuditEntry], start_hash: str = GENESIS_HASH) -> bool:
    """Check previous_hash links and recompute every entry hash, in order.

    start_hash is the hash the first entry must link to.
    """
    expected_prev = start_hash
    for entry in entries:
        if entry.previous_hash != expected_prev:
            logger.critical(
                "AUDIT_CHAIN_VERIFICATION_FAILED",
                extra={
                    "entry_id": entry.entry_id,
                    "expected_prev": expected_prev[:16],
                    "actual_prev": entry.previous_hash[:16],
                }
            )
            return False

        computed = entry.compute_hash()
        if computed != entry.entry_hash:
            logger.critical(
                "AUDIT_ENTRY_HASH_MISMATCH",
                extra={
                    "entry_id": entry.entry_id,
                    "computed": computed[:16],
                    "stored": entry.entry_hash[:16],
                }
            )
            return False

        expected_prev = entry.entry_hash

    logger.info("AUDIT_CHAIN_VERIFIED", extra={"entry_count": len(entries)})
    return True
