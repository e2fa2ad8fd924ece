"""Metadata catalog using SQLAlchemy.

This module provides:
- Full catalog listing for reconciliation snapshots
- Record insert and delete by id
- Conversion between ORM rows and MetadataRecord values
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from catalogsync.core.types import MetadataRecord
from catalogsync.server.models import Base, FileRecord

if TYPE_CHECKING:
    from sqlalchemy import Engine


class RecordNotFoundError(Exception):
    """Raised when a catalog record does not exist."""


def _to_record(row: FileRecord) -> MetadataRecord:
    return MetadataRecord(
        record_id=row.id,
        display_name=row.name,
        locator_url=row.url,
        size_bytes=row.size,
        mime_type=row.mime_type,
        uploaded_by=row.uploaded_by,
        original_name=row.original_name,
        created_at=row.created_at,
    )


def _enable_wal(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


class Catalog:
    """SQLAlchemy-backed metadata catalog.

    Accepts any SQLAlchemy URL. Nothing connects until the first query, so an
    unreachable database surfaces when the catalog is read, not when it is
    built. SQLite databases run in WAL mode for better concurrency with
    multiple readers.

    The ``files`` table belongs to the upload service. It is only created
    when ``create_tables`` is set, for tests and local development.
    """

    def __init__(self, url: str | Path, create_tables: bool = False) -> None:
        """Initialize the catalog.

        Args:
            url: SQLAlchemy database URL, or a path to a SQLite file.
            create_tables: Create missing tables on construction.
        """
        if isinstance(url, Path):
            url.parent.mkdir(parents=True, exist_ok=True)
            url = f"sqlite:///{url}"
        self._url = url
        self._is_sqlite = url.startswith("sqlite")

        in_memory = self._is_sqlite and (":memory:" in url or url.rstrip("/") == "sqlite:")

        connect_args = {"check_same_thread": False} if self._is_sqlite else {}
        # In-memory SQLite needs a single shared connection
        extra = {"poolclass": StaticPool} if in_memory else {}
        self._engine: Engine = create_engine(
            url, connect_args=connect_args, echo=False, **extra
        )

        if self._is_sqlite and not in_memory:
            event.listen(self._engine, "connect", _enable_wal)

        if create_tables:
            self.create_tables()

    def create_tables(self) -> None:
        """Create tables that don't exist yet."""
        Base.metadata.create_all(self._engine)

    @property
    def location(self) -> str:
        """Database URL with any password hidden."""
        return self._engine.url.render_as_string(hide_password=True)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    def find_all(self) -> list[MetadataRecord]:
        """List every catalog record, unfiltered.

        Returns:
            All records ordered by creation time.
        """
        with self._session() as session:
            stmt = select(FileRecord).order_by(FileRecord.created_at, FileRecord.id)
            return [_to_record(row) for row in session.execute(stmt).scalars().all()]

    def get(self, record_id: str) -> MetadataRecord | None:
        """Get a record by id.

        Args:
            record_id: Record id.

        Returns:
            MetadataRecord if found, None otherwise.
        """
        with self._session() as session:
            row = session.get(FileRecord, record_id)
            return _to_record(row) if row else None

    def count(self) -> int:
        """Number of catalog records."""
        with self._session() as session:
            return session.execute(select(func.count()).select_from(FileRecord)).scalar_one()

    def insert(self, record: MetadataRecord) -> MetadataRecord:
        """Insert a record.

        ``record.record_id`` may be empty; the catalog then assigns one.

        Args:
            record: Record to insert.

        Returns:
            The stored record with its catalog-assigned id.
        """
        with self._session() as session:
            row = FileRecord(
                name=record.display_name,
                original_name=record.original_name or record.display_name,
                url=record.locator_url,
                size=record.size_bytes,
                mime_type=record.mime_type,
                uploaded_by=record.uploaded_by,
            )
            if record.record_id:
                row.id = record.record_id
            if record.created_at is not None:
                row.created_at = record.created_at
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(row)

    def delete_by_id(self, record_id: str) -> None:
        """Delete a record.

        Args:
            record_id: Record id.

        Raises:
            RecordNotFoundError: If no record has this id.
        """
        with self._session() as session:
            row = session.get(FileRecord, record_id)
            if row is None:
                raise RecordNotFoundError(f"Record not found: {record_id}")
            session.delete(row)
            session.commit()
