"""Append-only storage for audit entries.

PostgreSQL backend writes to the audit_entries table, which grants
INSERT and SELECT only. Without a connection manager entries are kept in
process memory (development and tests).
"""
import json
import logging
import threading
from datetime import datetime
from typing import List, Optional

from wellspring.shared.database import ConnectionManager, RepositoryError
from .audit_logger import AuditEntry, AuditEventKind, verify_entries

logger = logging.getLogger(__name__)


class AuditRepository:
    """Repository for immutable audit entries."""

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        self.connection_manager = connection_manager
        self._memory_store: List[AuditEntry] = []
        self._memory_lock = threading.Lock()

        logger.info(
            "AUDIT_REPOSITORY_INITIALIZED",
            extra={"backend": "postgresql" if connection_manager else "memory"}
        )

    def append(self, entry: AuditEntry) -> bool:
        """Append an entry. Entries are never updated or deleted.

        Raises:
            RepositoryError: If storage fails
        """
        if self.connection_manager:
            return self._append_postgres(entry)
        return self._append_memory(entry)

    def _append_postgres(self, entry: AuditEntry) -> bool:
        query = """
            INSERT INTO audit_entries (
                entry_id, timestamp, kind, subject_id_hash, alert_id,
                severity, details, previous_hash, entry_hash
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s
            )
        """

        params = (
            entry.entry_id,
            entry.timestamp,
            entry.kind.value,
            entry.subject_id_hash,
            entry.alert_id,
            entry.severity,
            json.dumps(entry.details, default=str),
            entry.previous_hash,
            entry.entry_hash,
        )

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                conn.commit()
        except Exception as e:
            logger.error(
                "POSTGRES_APPEND_FAILED",
                extra={"entry_id": entry.entry_id, "error": str(e)}
            )
            raise RepositoryError(f"Failed to append to PostgreSQL: {e}") from e

        logger.debug(
            "AUDIT_ENTRY_STORED_POSTGRES",
            extra={"entry_id": entry.entry_id, "kind": entry.kind.value}
        )
        return True

    def _append_memory(self, entry: AuditEntry) -> bool:
        with self._memory_lock:
            self._memory_store.append(entry)

        logger.debug(
            "AUDIT_ENTRY_STORED_MEMORY",
            extra={"entry_id": entry.entry_id, "kind": entry.kind.value}
        )
        return True

    def query(
        self,
        kind: Optional[AuditEventKind] = None,
        alert_id: Optional[str] = None,
        subject_id_hash: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        """Matching entries, newest first, at most `limit`."""
        if self.connection_manager:
            return self._query_postgres(kind, alert_id, subject_id_hash, start_date, end_date, limit)
        return self._query_memory(kind, alert_id, subject_id_hash, start_date, end_date, limit)

    def _query_postgres(
        self,
        kind: Optional[AuditEventKind],
        alert_id: Optional[str],
        subject_id_hash: Optional[str],
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        limit: int,
    ) -> List[AuditEntry]:
        query = (
            "SELECT entry_id, timestamp, kind, subject_id_hash, alert_id, severity, "
            "details, previous_hash, entry_hash FROM audit_entries WHERE 1=1"
        )
        params: list = []

        if kind:
            query += " AND kind = %s"
            params.append(kind.value)
        if alert_id:
            query += " AND alert_id = %s"
            params.append(alert_id)
        if subject_id_hash:
            query += " AND subject_id_hash = %s"
            params.append(subject_id_hash)
        if start_date:
            query += " AND timestamp >= %s"
            params.append(start_date)
        if end_date:
            query += " AND timestamp <= %s"
            params.append(end_date)

        query += " ORDER BY timestamp DESC LIMIT %s"
        params.append(limit)

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
        except Exception as e:
            logger.error("POSTGRES_QUERY_FAILED", extra={"error": str(e)})
            raise RepositoryError(f"Failed to query audit entries: {e}") from e

        return [self._row_to_entry(row) for row in rows]

    def _query_memory(
        self,
        kind: Optional[AuditEventKind],
        alert_id: Optional[str],
        subject_id_hash: Optional[str],
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        limit: int,
    ) -> List[AuditEntry]:
        with self._memory_lock:
            results = list(self._memory_store)

        if kind:
            results = [e for e in results if e.kind == kind]
        if alert_id:
            results = [e for e in results if e.alert_id == alert_id]
        if subject_id_hash:
            results = [e for e in results if e.subject_id_hash == subject_id_hash]
        if start_date:
            results = [e for e in results if e.timestamp >= start_date]
        if end_date:
            results = [e for e in results if e.timestamp <= end_date]

        # Stored in chain order; reverse for newest first
        return list(reversed(results))[:limit]

    def _row_to_entry(self, row: tuple) -> AuditEntry:
        details = row[6]
        if isinstance(details, str):
            details = json.loads(details)

        return AuditEntry(
            entry_id=row[0],
            timestamp=row[1],
            kind=AuditEventKind(row[2]),
            subject_id_hash=row[3],
            alert_id=row[4],
            severity=row[5],
            details=details or {},
            previous_hash=row[7],
            entry_hash=row[8],
        )

    def verify_chain(self, entries: Optional[List[AuditEntry]] = None) -> bool:
        """Verify the stored chain (or the given entries) from genesis."""
        if entries is None:
            # Newest first from query(); the chain runs oldest first
            entries = list(reversed(self.query(limit=10000)))
        return verify_entries(entries)
