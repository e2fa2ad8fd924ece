"""Store/catalog reconciliation job.

This module provides:
- Snapshot readers for the object store and the metadata catalog
- The diff engine (symmetric difference by NormalizedKey)
- The repair executor (per-item fault isolation)
- ReconciliationJob, the single-flight entry point triggered by the scheduler

A run reads both sides, computes which store objects have no catalog record
and which catalog records point at no store object, then inserts or deletes
catalog rows accordingly. The store is never modified.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from catalogsync.core.keys import KeyCodec, guess_mime_type
from catalogsync.core.types import (
    SYSTEM_ACTOR,
    MetadataRecord,
    ReconciliationResult,
    RepairAction,
    RepairFailure,
    RunReport,
    StorageObject,
)

if TYPE_CHECKING:
    from catalogsync.core.config import Settings
    from catalogsync.server.database import Catalog
    from catalogsync.server.events import EventNotifier
    from catalogsync.server.storage import ObjectStore

logger = logging.getLogger(__name__)


class SnapshotReadError(Exception):
    """Raised when a full listing of the store or the catalog fails."""

    def __init__(self, side: str, cause: BaseException) -> None:
        super().__init__(f"Failed to read {side} snapshot: {cause}")
        self.side = side
        self.cause = cause


# === Snapshot readers ===


def list_store_objects(store: ObjectStore, prefix: str) -> list[StorageObject]:
    """Full listing of the store under ``prefix``.

    Raises:
        SnapshotReadError: If the store cannot be listed.
    """
    try:
        return store.list(prefix)
    except Exception as e:
        raise SnapshotReadError("store", e) from e


def list_catalog_records(catalog: Catalog) -> list[MetadataRecord]:
    """Full listing of the catalog.

    Raises:
        SnapshotReadError: If the catalog cannot be read.
    """
    try:
        return catalog.find_all()
    except Exception as e:
        raise SnapshotReadError("catalog", e) from e


# === Diff engine ===


def reconcile(
    store_objects: list[StorageObject],
    catalog_records: list[MetadataRecord],
    codec: KeyCodec,
) -> ReconciliationResult:
    """Compute the symmetric difference between store and catalog.

    Entities are matched purely on NormalizedKey equality. Catalog records
    sharing a key are each checked on their own and are not deduplicated.

    Args:
        store_objects: Store snapshot.
        catalog_records: Catalog snapshot.
        codec: Key codec used to normalize both sides.

    Returns:
        Objects missing from the catalog and records missing from the store.
    """
    store_keys = {codec.normalize_storage_key(obj.storage_key) for obj in store_objects}
    catalog_keys = {codec.normalize_locator(rec.locator_url) for rec in catalog_records}

    return ReconciliationResult(
        missing_in_catalog=[
            obj
            for obj in store_objects
            if codec.normalize_storage_key(obj.storage_key) not in catalog_keys
        ],
        missing_in_store=[
            rec
            for rec in catalog_records
            if codec.normalize_locator(rec.locator_url) not in store_keys
        ],
    )


def find_duplicate_keys(
    catalog_records: list[MetadataRecord], codec: KeyCodec
) -> dict[str, list[MetadataRecord]]:
    """Group catalog records that resolve to the same NormalizedKey.

    Returns:
        Mapping of key to the records sharing it, only for keys used more
        than once.
    """
    by_key: dict[str, list[MetadataRecord]] = defaultdict(list)
    for record in catalog_records:
        by_key[codec.normalize_locator(record.locator_url)].append(record)
    return {key: records for key, records in by_key.items() if len(records) > 1}


# === Repair executor ===


class RepairExecutor:
    """Applies catalog repairs one item at a time.

    A failing item is logged and recorded on the report; the pass moves on.
    """

    def __init__(
        self,
        catalog: Catalog,
        notifier: EventNotifier,
        codec: KeyCodec,
        actor: str = SYSTEM_ACTOR,
    ) -> None:
        self._catalog = catalog
        self._notifier = notifier
        self._codec = codec
        self._actor = actor

    def record_for(self, obj: StorageObject) -> MetadataRecord:
        """Catalog record describing an orphan store object."""
        return MetadataRecord(
            record_id="",
            display_name=obj.display_name,
            original_name=obj.display_name,
            locator_url=self._codec.locator_for(obj.storage_key),
            size_bytes=obj.size_bytes,
            mime_type=guess_mime_type(obj.storage_key),
            uploaded_by=self._actor,
        )

    def create_missing_in_catalog(
        self, objects: list[StorageObject], report: RunReport
    ) -> None:
        """Insert a catalog record for every orphan store object.

        No event is published for this direction.
        """
        for obj in objects:
            try:
                created = self._catalog.insert(self.record_for(obj))
            except Exception as e:
                logger.exception(
                    "Failed to create catalog record for store object %s", obj.storage_key
                )
                report.failures.append(
                    RepairFailure(RepairAction.CREATE, obj.storage_key, str(e))
                )
                continue
            report.created += 1
            logger.info(
                "Created catalog record %s for store object: %s",
                created.record_id,
                obj.storage_key,
            )

    def delete_missing_in_store(
        self, records: list[MetadataRecord], report: RunReport
    ) -> None:
        """Delete every catalog record whose object is gone, then notify.

        The delete and the event are independent steps: a record stays
        deleted even when its event cannot be published.
        """
        for record in records:
            try:
                self._catalog.delete_by_id(record.record_id)
            except Exception as e:
                logger.exception(
                    "Failed to delete catalog record %s (%s)",
                    record.record_id,
                    record.display_name,
                )
                report.failures.append(
                    RepairFailure(RepairAction.DELETE, record.record_id, str(e))
                )
                continue
            report.deleted += 1
            logger.info(
                "Deleted catalog record %s for missing store object: %s",
                record.record_id,
                record.display_name,
            )
            try:
                if self._notifier.publish_deleted(
                    record.record_id, record.display_name, self._actor
                ):
                    report.events_published += 1
            except Exception:
                logger.exception("Notifier raised for record %s", record.record_id)


# === Run guard ===


class RunState(str, Enum):
    """State of a job's single-flight cell."""

    IDLE = "idle"
    RUNNING = "running"


class RunGuard:
    """Single-flight cell owned by one job instance.

    Admission never waits: a trigger arriving while a run is in flight is
    turned away.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    @contextmanager
    def admit(self) -> Iterator[bool]:
        """Yield True if this caller now owns the run, False otherwise.

        The cell returns to IDLE when the owning block exits, whether it
        returned or raised.
        """
        if not self._lock.acquire(blocking=False):
            yield False
            return
        self._state = RunState.RUNNING
        try:
            yield True
        finally:
            self._state = RunState.IDLE
            self._lock.release()


# === Job ===


class ReconciliationJob:
    """Reconciles the object store with the metadata catalog.

    Each instance has its own run guard, so jobs for different buckets can
    run side by side. The guard does not coordinate across processes.
    """

    def __init__(
        self,
        store: ObjectStore,
        catalog: Catalog,
        notifier: EventNotifier,
        codec: KeyCodec,
        prefix: str = "files/",
        max_delete_fraction: float | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> None:
        """Initialize the job.

        Args:
            store: Object store to list.
            catalog: Metadata catalog to list and repair.
            notifier: Event notifier for delete repairs.
            codec: Key codec shared by the diff and the repairs.
            prefix: Logical store prefix to reconcile.
            max_delete_fraction: When set, skip the delete pass if it would
                remove more than this fraction of the catalog.
            actor: Identity recorded on repairs.
        """
        self._store = store
        self._catalog = catalog
        self._notifier = notifier
        self._codec = codec
        self._prefix = prefix
        self._max_delete_fraction = max_delete_fraction
        self._executor = RepairExecutor(catalog, notifier, codec, actor)
        self._guard = RunGuard()

    @classmethod
    def from_settings(cls, settings: Settings) -> ReconciliationJob:
        """Build a job and its collaborators from settings."""
        from catalogsync.server.database import Catalog
        from catalogsync.server.events import create_notifier
        from catalogsync.server.storage import create_store

        store_config = settings.store
        codec = KeyCodec(
            store_config.public_endpoint or store_config.endpoint,
            store_config.bucket,
            legacy_prefixes=store_config.legacy_prefixes,
        )
        return cls(
            store=create_store(store_config),
            catalog=Catalog(settings.database_url, create_tables=settings.create_tables),
            notifier=create_notifier(settings.events),
            codec=codec,
            prefix=store_config.prefix,
            max_delete_fraction=settings.max_delete_fraction,
        )

    @property
    def store(self) -> ObjectStore:
        return self._store

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def codec(self) -> KeyCodec:
        return self._codec

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def is_running(self) -> bool:
        return self._guard.state is RunState.RUNNING

    def close(self) -> None:
        """Release catalog and notifier resources."""
        self._notifier.close()
        self._catalog.close()

    def run_reconciliation(self, dry_run: bool = False) -> RunReport:
        """Run one reconciliation, unless one is already in flight.

        Args:
            dry_run: Compute and log the diff without repairing anything.

        Returns:
            Report of the run; ``skipped`` is set when another run held the
            guard.

        Raises:
            SnapshotReadError: If either snapshot cannot be read.
        """
        with self._guard.admit() as admitted:
            if not admitted:
                logger.warning("Reconciliation already running, skipping this trigger")
                return RunReport(skipped=True, finished_at=datetime.now(UTC))

            report = RunReport(dry_run=dry_run)
            logger.info("Starting store/catalog reconciliation (%r)", self._codec)
            try:
                self._run_pipeline(report)
            except Exception:
                logger.exception("Reconciliation run failed")
                raise
            report.finished_at = datetime.now(UTC)
            logger.info("Reconciliation completed: %s", report.summary())
            return report

    def diff(self) -> ReconciliationResult:
        """Read both snapshots and return the diff without repairing."""
        store_objects = list_store_objects(self._store, self._prefix)
        catalog_records = list_catalog_records(self._catalog)
        return reconcile(store_objects, catalog_records, self._codec)

    def _run_pipeline(self, report: RunReport) -> None:
        store_objects = list_store_objects(self._store, self._prefix)
        report.store_count = len(store_objects)
        logger.info("Found %d objects in store (%s)", len(store_objects), self._store.location)

        catalog_records = list_catalog_records(self._catalog)
        report.catalog_count = len(catalog_records)
        logger.info("Found %d records in catalog", len(catalog_records))

        self._warn_on_suspicious_catalog(catalog_records)

        result = reconcile(store_objects, catalog_records, self._codec)
        if result.is_consistent:
            logger.info("Store and catalog are consistent")
            return

        if result.missing_in_catalog:
            logger.info(
                "Found %d store objects missing in catalog", len(result.missing_in_catalog)
            )
        if result.missing_in_store:
            logger.info(
                "Found %d catalog records missing in store", len(result.missing_in_store)
            )

        if report.dry_run:
            for obj in result.missing_in_catalog:
                logger.info("[dry run] would create catalog record for %s", obj.storage_key)
            for record in result.missing_in_store:
                logger.info(
                    "[dry run] would delete catalog record %s (%s)",
                    record.record_id,
                    record.display_name,
                )
            return

        if result.missing_in_catalog:
            self._executor.create_missing_in_catalog(result.missing_in_catalog, report)

        if result.missing_in_store:
            if self._delete_pass_exceeds_limit(len(result.missing_in_store), len(catalog_records)):
                report.delete_pass_skipped = True
            else:
                self._executor.delete_missing_in_store(result.missing_in_store, report)

    def _delete_pass_exceeds_limit(self, to_delete: int, catalog_size: int) -> bool:
        if self._max_delete_fraction is None or catalog_size == 0:
            return False
        fraction = to_delete / catalog_size
        if fraction > self._max_delete_fraction:
            logger.error(
                "Refusing to delete %d of %d catalog records (%.0f%% > %.0f%% limit); "
                "check store endpoint and bucket settings",
                to_delete,
                catalog_size,
                fraction * 100,
                self._max_delete_fraction * 100,
            )
            return True
        return False

    def _warn_on_suspicious_catalog(self, catalog_records: list[MetadataRecord]) -> None:
        unmanaged = sum(1 for r in catalog_records if not self._codec.is_managed(r.locator_url))
        if unmanaged:
            logger.warning(
                "%d catalog records have locators outside %s",
                unmanaged,
                ", ".join(self._codec.prefixes),
            )
        for key, records in find_duplicate_keys(catalog_records, self._codec).items():
            logger.warning(
                "Catalog records %s share storage key %s",
                ", ".join(r.record_id for r in records),
                key,
            )
