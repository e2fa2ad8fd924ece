"""Tests for file event notifiers."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from unittest.mock import MagicMock, patch

import httpx
import pytest

from catalogsync.core.config import EventsConfig
from catalogsync.server.events import (
    FILE_DELETED,
    HttpEventNotifier,
    KafkaEventNotifier,
    LoggingEventNotifier,
    create_notifier,
    new_event_id,
)


def make_notifier(handler) -> HttpEventNotifier:
    """Create an HttpEventNotifier backed by a mock transport."""
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpEventNotifier(url="http://gateway/events", client=client)


class TestEventEnvelope:
    """Tests for the file.deleted envelope."""

    def test_event_id_format(self) -> None:
        event_id = new_event_id("delete")
        kind, millis, suffix = event_id.split("_")
        assert kind == "delete"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_envelope_fields(self) -> None:
        notifier = LoggingEventNotifier(source="tests")
        event = notifier.build_deleted_event("db-1", "missing.jpg", "system-sync")

        payload = event.model_dump(mode="json", by_alias=True)

        assert payload["type"] == FILE_DELETED
        assert payload["version"] == "1.0"
        assert payload["source"] == "tests"
        assert payload["id"].startswith("delete_")
        assert payload["data"] == {
            "fileId": "db-1",
            "fileName": "missing.jpg",
            "deletedBy": "system-sync",
        }


class TestHttpEventNotifier:
    """Tests for HttpEventNotifier."""

    def test_posts_event(self) -> None:
        """Should POST topic, key and envelope to the gateway."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        notifier = make_notifier(handler)

        assert notifier.publish_deleted("db-1", "missing.jpg", "system-sync") is True

        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert str(requests[0].url) == "http://gateway/events"
        body = json.loads(requests[0].content)
        assert body["topic"] == "file-events"
        assert body["key"] == "db-1"
        assert body["event"]["data"]["fileName"] == "missing.jpg"

    def test_http_error_is_swallowed(self, caplog: pytest.LogCaptureFixture) -> None:
        """A failing gateway must not raise to the caller."""
        notifier = make_notifier(lambda request: httpx.Response(500))

        with caplog.at_level(logging.ERROR, logger="catalogsync.server.events"):
            result = notifier.publish_deleted("db-1", "missing.jpg", "system-sync")

        assert result is False
        assert "Failed to publish file deleted event" in caplog.text

    def test_connection_error_is_swallowed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused")

        notifier = make_notifier(handler)

        assert notifier.publish_deleted("db-1", "missing.jpg", "system-sync") is False

    def test_close_keeps_injected_client_open(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        notifier = HttpEventNotifier(url="http://gateway/events", client=client)
        notifier.close()
        assert not client.is_closed


class TestKafkaEventNotifier:
    """Tests for KafkaEventNotifier."""

    @pytest.fixture
    def producer(self) -> MagicMock:
        """Create a producer double whose sends are acknowledged."""
        return MagicMock()

    def test_sends_keyed_message(self, producer: MagicMock) -> None:
        """Should publish to file-events keyed by file id."""
        notifier = KafkaEventNotifier(brokers=["kafka:9092"], producer=producer)

        assert notifier.publish_deleted("db-1", "missing.jpg", "system-sync") is True

        producer.send.assert_called_once()
        args, kwargs = producer.send.call_args
        assert args == ("file-events",)
        assert kwargs["key"] == b"db-1"
        message = json.loads(kwargs["value"])
        assert message["type"] == FILE_DELETED
        assert message["data"]["fileId"] == "db-1"
        assert message["data"]["deletedBy"] == "system-sync"
        sent_at = datetime.fromisoformat(message["timestamp"].replace("Z", "+00:00"))
        assert kwargs["timestamp_ms"] == int(sent_at.timestamp() * 1000)
        producer.send.return_value.get.assert_called_once_with(timeout=10.0)

    def test_broker_error_is_swallowed(
        self, producer: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An unacknowledged send must not raise to the caller."""
        producer.send.return_value.get.side_effect = TimeoutError("no ack")
        notifier = KafkaEventNotifier(brokers=["kafka:9092"], producer=producer)

        with caplog.at_level(logging.ERROR, logger="catalogsync.server.events"):
            result = notifier.publish_deleted("db-1", "missing.jpg", "system-sync")

        assert result is False
        assert "Failed to publish file deleted event" in caplog.text

    def test_producer_created_on_first_send(self) -> None:
        """Construction never contacts the brokers."""
        with patch("kafka.KafkaProducer") as producer_cls:
            notifier = KafkaEventNotifier(
                brokers=["kafka:9092"], client_id="sync", retries=5, timeout=2.0
            )
            producer_cls.assert_not_called()

            notifier.publish_deleted("db-1", "missing.jpg", "system-sync")
            notifier.close()

        producer_cls.assert_called_once_with(
            bootstrap_servers=["kafka:9092"],
            client_id="sync",
            retries=5,
            request_timeout_ms=2000,
        )
        producer_cls.return_value.close.assert_called_once_with(timeout=2.0)

    def test_close_keeps_injected_producer_open(self, producer: MagicMock) -> None:
        notifier = KafkaEventNotifier(brokers=["kafka:9092"], producer=producer)
        notifier.close()
        producer.close.assert_not_called()


class TestLoggingEventNotifier:
    """Tests for LoggingEventNotifier."""

    def test_skips_with_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        notifier = LoggingEventNotifier()

        with caplog.at_level(logging.WARNING, logger="catalogsync.server.events"):
            assert notifier.publish_deleted("db-1", "x.jpg", "system-sync") is False

        assert "No event channel configured" in caplog.text


class TestCreateNotifier:
    """Tests for create_notifier factory function."""

    def test_without_url(self) -> None:
        assert isinstance(create_notifier(EventsConfig()), LoggingEventNotifier)

    def test_with_url(self) -> None:
        notifier = create_notifier(EventsConfig(url="http://gateway/events"))
        try:
            assert isinstance(notifier, HttpEventNotifier)
        finally:
            notifier.close()

    def test_kafka_brokers_take_precedence(self) -> None:
        config = EventsConfig(kafka_brokers=["kafka:9092"], url="http://gateway/events")
        notifier = create_notifier(config)
        try:
            assert isinstance(notifier, KafkaEventNotifier)
        finally:
            notifier.close()
