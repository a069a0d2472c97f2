"""Notification dispatch to the external delivery sink.

Handler notifications are published to a Kinesis stream; push, email and
SMS delivery (and their retries) happen downstream. Dispatch is
fire-and-forget: a failed publish is logged at CRITICAL and never raised,
so the alert lifecycle carries on regardless.
"""
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Optional

import boto3

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    """Immutable notification record published to the stream."""
    event_id: str
    targets: FrozenSet[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    event_type: str = "crisis.notification"
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_kinesis_payload(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat() + "Z",
            "source": "crisis-engine",
            "targets": sorted(self.targets),
            "data": self.payload,
        }


class NotificationDispatcher:
    """Publishes notify(targets, payload) calls to Kinesis."""

    def __init__(
        self,
        stream_name: str = "wellspring-crisis-notifications",
        enabled: bool = True,
        region: str = "us-east-1",
    ):
        self.stream_name = stream_name
        self.enabled = enabled
        self.region = region
        self._kinesis_client = None

        logger.info(
            "NOTIFICATION_DISPATCHER_INITIALIZED",
            extra={
                "stream_name": stream_name,
                "enabled": enabled,
                "region": region,
            }
        )

    @property
    def kinesis_client(self):
        """Lazy initialization of the Kinesis client."""
        if self._kinesis_client is None and self.enabled:
            try:
                self._kinesis_client = boto3.client("kinesis", region_name=self.region)
            except Exception as e:
                logger.error(
                    "KINESIS_CLIENT_INIT_FAILED",
                    extra={"error": str(e)}
                )
        return self._kinesis_client

    def notify(self, targets: Iterable[str], payload: Optional[Dict[str, Any]] = None) -> bool:
        """Publish a notification for a set of roles.

        Args:
            targets: Roles to notify (e.g. "senior_handler")
            payload: JSON-serializable notification body; should carry
                alert_id and a hashed subject id, never raw PII

        Returns:
            True if the stream accepted the record
        """
        event = NotificationEvent(
            event_id=f"ntf_{uuid.uuid4().hex[:12]}",
            targets=frozenset(targets),
            payload=dict(payload or {}),
        )
        record = event.to_kinesis_payload()
        partition_key = str(event.payload.get("alert_id") or event.event_id)

        client = self.kinesis_client
        if client is None:
            logger.critical(
                "NOTIFICATION_FALLBACK_LOG",
                extra={
                    "event_id": event.event_id,
                    "payload": json.dumps(record),
                    "reason": "publishing_disabled" if not self.enabled else "kinesis_client_unavailable",
                    "action": "MANUAL_PROCESSING_REQUIRED",
                }
            )
            return False

        try:
            response = client.put_record(
                StreamName=self.stream_name,
                Data=json.dumps(record),
                PartitionKey=partition_key,  # Same alert -> same shard
            )
        except Exception as e:
            logger.critical(
                "NOTIFICATION_PUBLISH_FAILED",
                extra={
                    "event_id": event.event_id,
                    "targets": sorted(event.targets),
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "MANUAL_REVIEW_REQUIRED",
                    "payload": json.dumps(record),
                }
            )
            return False

        logger.info(
            "NOTIFICATION_PUBLISHED",
            extra={
                "event_id": event.event_id,
                "targets": sorted(event.targets),
                "shard_id": response.get("ShardId"),
                "sequence_number": response.get("SequenceNumber"),
            }
        )
        return True
