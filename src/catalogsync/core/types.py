"""Shared types for catalogsync.

This module defines the value objects passed between the store and catalog
adapters and the reconciliation engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

# Identity recorded on catalog rows and events produced by reconciliation.
# Never collides with an end-user identity.
SYSTEM_ACTOR = "system-sync"


class RepairAction(str, Enum):
    """Kind of repair applied to the catalog."""

    CREATE = "create"
    DELETE = "delete"


@dataclass(frozen=True)
class StorageObject:
    """One object currently present in the object store.

    Attributes:
        storage_key: Store-native key (e.g. "files/image/123-photo.jpg").
        display_name: Human-readable name derived from the key.
        size_bytes: Object size in bytes.
        last_modified: Last modification time reported by the store.
    """

    storage_key: str
    display_name: str
    size_bytes: int
    last_modified: datetime


@dataclass
class MetadataRecord:
    """One row of the metadata catalog."""

    record_id: str
    display_name: str
    locator_url: str
    size_bytes: int
    mime_type: str
    uploaded_by: str
    original_name: str | None = None
    created_at: datetime | None = None


@dataclass
class ReconciliationResult:
    """Symmetric difference between a store snapshot and a catalog snapshot."""

    missing_in_catalog: list[StorageObject] = field(default_factory=list)
    missing_in_store: list[MetadataRecord] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        """True when neither side has anything the other lacks."""
        return not self.missing_in_catalog and not self.missing_in_store


@dataclass
class RepairFailure:
    """A single repair that could not be applied."""

    action: RepairAction
    item: str
    error: str


@dataclass
class RunReport:
    """Outcome of one reconciliation run.

    A run that completed with item failures still counts as a successful run;
    ``failures`` tells the two apart.
    """

    skipped: bool = False
    dry_run: bool = False
    store_count: int = 0
    catalog_count: int = 0
    created: int = 0
    deleted: int = 0
    events_published: int = 0
    delete_pass_skipped: bool = False
    failures: list[RepairFailure] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        """True when every attempted repair succeeded."""
        return not self.failures

    def summary(self) -> str:
        """One-line summary suitable for logs and CLI output."""
        if self.skipped:
            return "skipped (another run in progress)"
        prefix = "dry run: " if self.dry_run else ""
        return (
            f"{prefix}store={self.store_count} catalog={self.catalog_count} "
            f"created={self.created} deleted={self.deleted} "
            f"failures={len(self.failures)}"
        )
