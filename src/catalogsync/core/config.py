"""Configuration classes for catalogsync.

Settings are plain dataclasses; ``Settings.from_env()`` fills them from
``CATALOGSYNC_*`` environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_SCHEDULE = "0 * * * *"  # hourly


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def _parse_list(value: str | None) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _parse_legacy_prefixes(value: str | None) -> list[tuple[str, str]]:
    """Parse ``endpoint/bucket,endpoint/bucket`` into pairs.

    The bucket is the last path segment of each entry.
    """
    pairs: list[tuple[str, str]] = []
    if not value:
        return pairs
    for entry in value.split(","):
        entry = entry.strip().rstrip("/")
        if not entry:
            continue
        endpoint, sep, bucket = entry.rpartition("/")
        if not sep or not endpoint or not bucket:
            raise ValueError(f"Invalid legacy prefix (expected endpoint/bucket): {entry}")
        pairs.append((endpoint, bucket))
    return pairs


@dataclass
class StoreConfig:
    """Object store connection settings.

    Attributes:
        endpoint: S3 API endpoint (MinIO, OVH, AWS...).
        bucket: Bucket holding the files.
        public_endpoint: Endpoint written into catalog locator URLs. Defaults
            to ``endpoint``.
        prefix: Logical prefix that reconciliation lists under.
        local_path: When set, a local directory tree is used instead of S3.
        legacy_prefixes: Earlier (endpoint, bucket) pairs still found in
            catalog locator URLs.
    """

    endpoint: str = "http://localhost:9000"
    bucket: str = "files"
    region: str = "us-east-1"
    access_key: str | None = "minioadmin"
    secret_key: str | None = "minioadmin"
    force_path_style: bool = True
    public_endpoint: str | None = None
    prefix: str = "files/"
    local_path: str | None = None
    legacy_prefixes: list[tuple[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Default the public endpoint. Endpoints are kept verbatim."""
        if not self.public_endpoint:
            self.public_endpoint = self.endpoint

    @property
    def store_type(self) -> str:
        return "local" if self.local_path else "s3"


@dataclass
class EventsConfig:
    """Event channel settings.

    Kafka brokers select the Kafka producer; otherwise a URL selects the HTTP
    gateway. With neither, events are only logged.
    """

    kafka_brokers: list[str] = field(default_factory=list)
    kafka_client_id: str = "catalogsync"
    kafka_retries: int = 3
    url: str | None = None
    timeout: float = 10.0
    source: str = "catalogsync"
    topic: str = "file-events"


@dataclass
class Settings:
    """Top-level settings for the reconciliation job.

    ``create_tables`` lets the job create the catalog schema itself. It is
    meant for tests and local development; in production the upload service
    owns the schema.
    """

    store: StoreConfig = field(default_factory=StoreConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    database_url: str = "sqlite:///catalogsync.db"
    create_tables: bool = False
    schedule: str = DEFAULT_SCHEDULE
    max_delete_fraction: float | None = None
    log_path: str | None = None

    def __post_init__(self) -> None:
        """Validate ranges."""
        if self.max_delete_fraction is not None and not 0 < self.max_delete_fraction <= 1:
            raise ValueError("max_delete_fraction must be in (0, 1]")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``CATALOGSYNC_*`` environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``).

        Returns:
            Populated Settings.

        Raises:
            ValueError: If a variable cannot be parsed.
        """
        env = os.environ if environ is None else environ

        store = StoreConfig(
            endpoint=env.get("CATALOGSYNC_S3_ENDPOINT", "http://localhost:9000"),
            bucket=env.get("CATALOGSYNC_S3_BUCKET", "files"),
            region=env.get("CATALOGSYNC_S3_REGION", "us-east-1"),
            access_key=env.get("CATALOGSYNC_S3_ACCESS_KEY", "minioadmin"),
            secret_key=env.get("CATALOGSYNC_S3_SECRET_KEY", "minioadmin"),
            force_path_style=_env_bool(env.get("CATALOGSYNC_S3_FORCE_PATH_STYLE"), True),
            public_endpoint=env.get("CATALOGSYNC_S3_PUBLIC_ENDPOINT"),
            prefix=env.get("CATALOGSYNC_STORE_PREFIX", "files/"),
            local_path=env.get("CATALOGSYNC_STORAGE_PATH") or None,
            legacy_prefixes=_parse_legacy_prefixes(env.get("CATALOGSYNC_LEGACY_PREFIXES")),
        )

        events = EventsConfig(
            kafka_brokers=_parse_list(env.get("CATALOGSYNC_KAFKA_BROKERS")),
            kafka_client_id=env.get("CATALOGSYNC_KAFKA_CLIENT_ID", "catalogsync"),
            kafka_retries=int(env.get("CATALOGSYNC_KAFKA_RETRIES", "3")),
            url=env.get("CATALOGSYNC_EVENTS_URL") or None,
            timeout=float(env.get("CATALOGSYNC_EVENTS_TIMEOUT", "10")),
        )

        max_delete = env.get("CATALOGSYNC_MAX_DELETE_FRACTION")

        return cls(
            store=store,
            events=events,
            database_url=env.get("CATALOGSYNC_DATABASE_URL", "sqlite:///catalogsync.db"),
            create_tables=_env_bool(env.get("CATALOGSYNC_DATABASE_CREATE_TABLES"), False),
            schedule=env.get("CATALOGSYNC_SCHEDULE", DEFAULT_SCHEDULE),
            max_delete_fraction=float(max_delete) if max_delete else None,
            log_path=env.get("CATALOGSYNC_LOG_PATH") or None,
        )
