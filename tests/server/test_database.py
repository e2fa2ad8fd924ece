"""Tests for the metadata catalog."""

from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from catalogsync.core.types import MetadataRecord
from catalogsync.server.database import Catalog, RecordNotFoundError


def make_record(
    name: str = "test.jpg",
    url: str = "http://localhost:9000/files/files/image/123-test.jpg",
    record_id: str = "",
) -> MetadataRecord:
    """Create a MetadataRecord for testing."""
    return MetadataRecord(
        record_id=record_id,
        display_name=name,
        locator_url=url,
        size_bytes=1024,
        mime_type="image/jpeg",
        uploaded_by="alice",
    )


@pytest.fixture
def catalog(tmp_path: Path) -> Catalog:
    """Create a test catalog."""
    catalog = Catalog(tmp_path / "test.db", create_tables=True)
    yield catalog
    catalog.close()


class TestCatalogCreation:
    """Tests for catalog initialization."""

    def test_creates_db_file_from_path(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "catalog.db"
        catalog = Catalog(db_path, create_tables=True)
        assert db_path.exists()
        catalog.close()

    def test_no_schema_changes_by_default(self, tmp_path: Path) -> None:
        """The catalog schema is left alone unless tables are requested."""
        catalog = Catalog(tmp_path / "catalog.db")
        try:
            assert inspect(catalog._engine).get_table_names() == []
            catalog.create_tables()
            assert inspect(catalog._engine).get_table_names() == ["files"]
        finally:
            catalog.close()

    def test_connects_lazily(self, tmp_path: Path) -> None:
        """An unreachable database fails on first use, not on construction."""
        catalog = Catalog(f"sqlite:///{tmp_path / 'missing' / 'catalog.db'}")
        try:
            with pytest.raises(OperationalError):
                catalog.find_all()
        finally:
            catalog.close()

    def test_uses_wal_mode(self, catalog: Catalog) -> None:
        with catalog._engine.connect() as conn:
            result = conn.exec_driver_sql("PRAGMA journal_mode").fetchone()
        assert result is not None
        assert result[0].lower() == "wal"

    def test_in_memory_url(self) -> None:
        """In-memory catalogs should keep data across sessions."""
        catalog = Catalog("sqlite:///:memory:", create_tables=True)
        catalog.insert(make_record())
        assert catalog.count() == 1
        catalog.close()

    def test_location_hides_password(self) -> None:
        catalog = Catalog("sqlite://")
        assert catalog.location.startswith("sqlite")
        catalog.close()


class TestCatalogOperations:
    """Tests for catalog record operations."""

    def test_find_all_empty(self, catalog: Catalog) -> None:
        assert catalog.find_all() == []

    def test_insert_assigns_id(self, catalog: Catalog) -> None:
        created = catalog.insert(make_record())
        assert created.record_id
        assert created.display_name == "test.jpg"
        assert created.original_name == "test.jpg"
        assert created.uploaded_by == "alice"
        assert created.created_at is not None

    def test_insert_keeps_given_id(self, catalog: Catalog) -> None:
        created = catalog.insert(make_record(record_id="db-1"))
        assert created.record_id == "db-1"
        assert catalog.get("db-1") is not None

    def test_insert_keeps_created_at(self, catalog: Catalog) -> None:
        record = make_record()
        record.created_at = datetime(2024, 1, 1, tzinfo=UTC)
        created = catalog.insert(record)
        assert created.created_at is not None
        assert created.created_at.year == 2024

    def test_find_all_returns_every_row(self, catalog: Catalog) -> None:
        catalog.insert(make_record("a.jpg", "http://localhost:9000/files/files/image/1-a.jpg"))
        catalog.insert(make_record("b.jpg", "http://localhost:9000/files/files/image/2-b.jpg"))
        # Duplicates and foreign URLs are returned too
        catalog.insert(make_record("b.jpg", "http://localhost:9000/files/files/image/2-b.jpg"))
        catalog.insert(make_record("c.jpg", "https://elsewhere/c.jpg"))

        records = catalog.find_all()

        assert len(records) == 4
        assert {r.display_name for r in records} == {"a.jpg", "b.jpg", "c.jpg"}

    def test_delete_by_id(self, catalog: Catalog) -> None:
        created = catalog.insert(make_record())
        catalog.delete_by_id(created.record_id)
        assert catalog.get(created.record_id) is None
        assert catalog.count() == 0

    def test_delete_missing_raises(self, catalog: Catalog) -> None:
        with pytest.raises(RecordNotFoundError, match="Record not found"):
            catalog.delete_by_id("nope")

    def test_get_missing(self, catalog: Catalog) -> None:
        assert catalog.get("nope") is None
