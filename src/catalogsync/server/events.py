"""File event publication.

This module provides:
- Pydantic schemas for file event envelopes
- EventNotifier interface used by the reconciliation job
- KafkaEventNotifier publishing events to the file-events topic
- HttpEventNotifier posting events to an HTTP event gateway
- LoggingEventNotifier used when no channel is configured

Publication is best-effort: notifiers catch and log delivery failures and
never raise to the caller.
"""

from __future__ import annotations

import logging
import secrets
import time
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from catalogsync.core.config import EventsConfig

logger = logging.getLogger(__name__)

FILE_DELETED = "file.deleted"
EVENT_VERSION = "1.0"


def new_event_id(kind: str) -> str:
    """Event id of the form ``<kind>_<epoch ms>_<random>``."""
    return f"{kind}_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class FileDeletedData(BaseModel):
    """Payload of a file.deleted event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_id: str
    file_name: str
    deleted_by: str


class FileDeletedEvent(BaseModel):
    """Envelope for a file.deleted event."""

    id: str = Field(default_factory=lambda: new_event_id("delete"))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: str
    version: str = EVENT_VERSION
    type: Literal["file.deleted"] = FILE_DELETED
    data: FileDeletedData


class EventNotifier(ABC):
    """Publishes file events on behalf of the reconciliation job."""

    def __init__(self, source: str = "catalogsync") -> None:
        self._source = source

    def build_deleted_event(
        self, record_id: str, display_name: str, actor: str
    ) -> FileDeletedEvent:
        """Build the envelope for a deleted catalog record."""
        return FileDeletedEvent(
            source=self._source,
            data=FileDeletedData(file_id=record_id, file_name=display_name, deleted_by=actor),
        )

    def publish_deleted(self, record_id: str, display_name: str, actor: str) -> bool:
        """Publish a file.deleted event.

        Never raises.

        Args:
            record_id: Id of the removed catalog record.
            display_name: Display name of the removed record.
            actor: Identity that performed the removal.

        Returns:
            True if the event was handed to the channel, False otherwise.
        """
        try:
            event = self.build_deleted_event(record_id, display_name, actor)
            delivered = self._send(event)
        except Exception:
            logger.exception("Failed to publish file deleted event: %s", record_id)
            return False
        if delivered:
            logger.info("File deleted event published: %s", record_id)
        return delivered

    @abstractmethod
    def _send(self, event: FileDeletedEvent) -> bool:
        """Deliver an event. May raise; ``publish_deleted`` contains it."""

    def close(self) -> None:
        """Release any underlying resources."""


class LoggingEventNotifier(EventNotifier):
    """Notifier used when no event channel is configured."""

    def _send(self, event: FileDeletedEvent) -> bool:
        logger.warning(
            "No event channel configured, skipping %s event for %s",
            event.type,
            event.data.file_id,
        )
        return False


class KafkaEventNotifier(EventNotifier):
    """Publishes event envelopes straight to Kafka.

    Each message goes to ``topic``, keyed by file id, with the envelope
    timestamp as the message timestamp. The producer is created on the first
    send so an unreachable broker never fails job construction.
    """

    def __init__(
        self,
        brokers: list[str],
        topic: str = "file-events",
        source: str = "catalogsync",
        client_id: str = "catalogsync",
        retries: int = 3,
        timeout: float = 10.0,
        producer: Any | None = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            brokers: Bootstrap servers as ``host:port`` strings.
            topic: Topic to publish to.
            source: Value of the envelope ``source`` field.
            client_id: Kafka client id.
            retries: Producer retries per message.
            timeout: Seconds to wait for each broker acknowledgement.
            producer: Optional preconfigured producer (e.g. for tests).
        """
        super().__init__(source)
        self._brokers = list(brokers)
        self._topic = topic
        self._client_id = client_id
        self._retries = retries
        self._timeout = timeout
        self._owns_producer = producer is None
        self._producer = producer

    def _get_producer(self) -> Any:
        if self._producer is None:
            from kafka import KafkaProducer

            self._producer = KafkaProducer(
                bootstrap_servers=self._brokers,
                client_id=self._client_id,
                retries=self._retries,
                request_timeout_ms=int(self._timeout * 1000),
            )
        return self._producer

    def _send(self, event: FileDeletedEvent) -> bool:
        future = self._get_producer().send(
            self._topic,
            key=event.data.file_id.encode("utf-8"),
            value=event.model_dump_json(by_alias=True).encode("utf-8"),
            timestamp_ms=int(event.timestamp.timestamp() * 1000),
        )
        future.get(timeout=self._timeout)
        return True

    def close(self) -> None:
        """Flush and close the producer if this notifier created it."""
        if self._owns_producer and self._producer is not None:
            self._producer.close(timeout=self._timeout)
            self._producer = None


class HttpEventNotifier(EventNotifier):
    """Posts event envelopes as JSON to an event gateway.

    The gateway receives ``{"topic", "key", "event"}`` and is responsible for
    forwarding to the bus.
    """

    def __init__(
        self,
        url: str,
        topic: str = "file-events",
        source: str = "catalogsync",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            url: Gateway endpoint receiving events.
            topic: Topic the gateway should publish to.
            source: Value of the envelope ``source`` field.
            timeout: Request timeout in seconds.
            client: Optional preconfigured httpx client (e.g. for tests).
        """
        super().__init__(source)
        self._url = url
        self._topic = topic
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def _send(self, event: FileDeletedEvent) -> bool:
        payload = {
            "topic": self._topic,
            "key": event.data.file_id,
            "event": event.model_dump(mode="json", by_alias=True),
        }
        response = self._client.post(self._url, json=payload)
        response.raise_for_status()
        return True

    def close(self) -> None:
        """Close the HTTP client if this notifier created it."""
        if self._owns_client:
            self._client.close()


def create_notifier(config: EventsConfig) -> EventNotifier:
    """Factory function to create the notifier from configuration.

    Kafka brokers take precedence over a gateway URL. With neither, events
    are only logged.
    """
    if config.kafka_brokers:
        return KafkaEventNotifier(
            brokers=config.kafka_brokers,
            topic=config.topic,
            source=config.source,
            client_id=config.kafka_client_id,
            retries=config.kafka_retries,
            timeout=config.timeout,
        )
    if config.url:
        return HttpEventNotifier(
            url=config.url,
            topic=config.topic,
            source=config.source,
            timeout=config.timeout,
        )
    return LoggingEventNotifier(source=config.source)
