"""Tests for NotificationDispatcher - Kinesis publishing."""
import json
from unittest.mock import MagicMock, patch

import pytest

from wellspring.shared.utils import configure_pii_salt
from wellspring.services.crisis_engine.notifications import NotificationDispatcher


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def kinesis():
    client = MagicMock()
    client.put_record.return_value = {"ShardId": "shard-0001", "SequenceNumber": "42"}
    return client


@pytest.fixture
def dispatcher(kinesis):
    dispatcher = NotificationDispatcher(stream_name="test-stream")
    dispatcher._kinesis_client = kinesis
    return dispatcher


class TestNotify:
    def test_publishes_record(self, dispatcher, kinesis):
        assert dispatcher.notify({"senior_handler"}, {"alert_id": "alert_1", "level": 1}) is True

        kwargs = kinesis.put_record.call_args.kwargs
        assert kwargs["StreamName"] == "test-stream"
        assert kwargs["PartitionKey"] == "alert_1"

        record = json.loads(kwargs["Data"])
        assert record["event_type"] == "crisis.notification"
        assert record["targets"] == ["senior_handler"]
        assert record["data"] == {"alert_id": "alert_1", "level": 1}
        assert record["event_id"].startswith("ntf_")

    def test_targets_sorted(self, dispatcher, kinesis):
        dispatcher.notify({"crisis_team", "admin"}, {"alert_id": "alert_1"})

        record = json.loads(kinesis.put_record.call_args.kwargs["Data"])
        assert record["targets"] == ["admin", "crisis_team"]

    def test_publish_failure_returns_false(self, dispatcher, kinesis):
        kinesis.put_record.side_effect = Exception("throttled")

        assert dispatcher.notify({"handler"}, {"alert_id": "alert_1"}) is False

    def test_disabled_dispatcher_logs_only(self):
        dispatcher = NotificationDispatcher(enabled=False)

        with patch("wellspring.services.crisis_engine.notifications.boto3.client") as client:
            assert dispatcher.notify({"handler"}, {"alert_id": "alert_1"}) is False

        client.assert_not_called()


class TestClient:
    def test_lazy_client(self):
        with patch("wellspring.services.crisis_engine.notifications.boto3.client") as client:
            dispatcher = NotificationDispatcher(region="eu-west-1")
            client.assert_not_called()

            assert dispatcher.kinesis_client is client.return_value

        client.assert_called_once_with("kinesis", region_name="eu-west-1")

    def test_client_init_failure(self):
        with patch(
            "wellspring.services.crisis_engine.notifications.boto3.client",
            side_effect=Exception("no region"),
        ):
            dispatcher = NotificationDispatcher()
            assert dispatcher.notify({"handler"}, {"alert_id": "alert_1"}) is False
