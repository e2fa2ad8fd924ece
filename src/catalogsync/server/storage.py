"""Object store abstraction for uploaded files.

This module provides:
- Abstract interface for the object store
- LocalFSStore for development/testing
- S3Store for production (MinIO, OVH, AWS)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from catalogsync.core.keys import display_name_from_key
from catalogsync.core.types import StorageObject

if TYPE_CHECKING:
    from typing import Any

    from catalogsync.core.config import StoreConfig


def is_directory_marker(key: str) -> bool:
    """Keys ending in a separator are folder placeholders, not files."""
    return key.endswith("/")


class ObjectStore(ABC):
    """Abstract interface for the file object store."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of where objects are stored."""

    @abstractmethod
    def list(self, prefix: str = "") -> list[StorageObject]:
        """List every object whose key starts with ``prefix``.

        Directory markers are excluded. The listing is complete: no paging
        state leaks to the caller.

        Args:
            prefix: Logical key prefix (e.g. "files/").

        Returns:
            Objects under the prefix.
        """

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store an object.

        Reconciliation never writes to the store; this seeds local and test
        stores.

        Args:
            key: Object key.
            data: Object content.
        """


class LocalFSStore(ObjectStore):
    """Local filesystem store for development and testing.

    Keys map to relative paths below the base directory.
    """

    def __init__(self, base_path: Path | str) -> None:
        """Initialize local store.

        Args:
            base_path: Base directory for objects.
        """
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._base_path}"

    def _object_path(self, key: str) -> Path:
        path = (self._base_path / key).resolve()
        if not path.is_relative_to(self._base_path):
            raise ValueError(f"Key escapes the store root: {key}")
        return path

    def list(self, prefix: str = "") -> list[StorageObject]:
        """List files below the base directory matching ``prefix``."""
        objects: list[StorageObject] = []
        for path in sorted(self._base_path.rglob("*")):
            if not path.is_file():
                continue
            key = path.relative_to(self._base_path).as_posix()
            if not key.startswith(prefix) or is_directory_marker(key):
                continue
            stat = path.stat()
            objects.append(
                StorageObject(
                    storage_key=key,
                    display_name=display_name_from_key(key),
                    size_bytes=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, UTC),
                )
            )
        return objects

    def put(self, key: str, data: bytes) -> None:
        """Store an object."""
        path = self._object_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class S3Store(ObjectStore):
    """S3-compatible store for production (MinIO, OVH, AWS, etc.)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
        force_path_style: bool = False,
    ) -> None:
        """Initialize S3 store.

        Args:
            bucket: S3 bucket name.
            endpoint_url: Custom endpoint URL (for MinIO, OVH, etc.).
            access_key: AWS access key ID.
            secret_key: AWS secret access key.
            region: AWS region (default: us-east-1).
            force_path_style: Use path-style addressing (required by MinIO).
        """
        import boto3
        from botocore.config import Config

        self._bucket = bucket
        self._endpoint_url = endpoint_url
        config = Config(s3={"addressing_style": "path"}) if force_path_style else None
        self._client: Any = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=config,
        )

    @property
    def location(self) -> str:
        """Return the S3 bucket location."""
        if self._endpoint_url:
            return f"S3: {self._endpoint_url}/{self._bucket}"
        return f"S3: s3://{self._bucket}"

    def list(self, prefix: str = "") -> list[StorageObject]:
        """List objects using the paginated ListObjectsV2 API."""
        paginator = self._client.get_paginator("list_objects_v2")
        objects: list[StorageObject] = []
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                key = item.get("Key")
                if not key or is_directory_marker(key):
                    continue
                objects.append(
                    StorageObject(
                        storage_key=key,
                        display_name=display_name_from_key(key),
                        size_bytes=int(item.get("Size", 0)),
                        last_modified=item["LastModified"],
                    )
                )
        return objects

    def put(self, key: str, data: bytes) -> None:
        """Store an object."""
        self._client.put_object(Bucket=self._bucket, Key=key, Body=data)


def create_store(config: StoreConfig) -> ObjectStore:
    """Factory function to create the object store from configuration.

    Args:
        config: Store configuration. ``local_path`` selects the local
            filesystem store; otherwise S3 is used.

    Returns:
        Configured ObjectStore instance.

    Raises:
        ValueError: If S3 is selected without a bucket.
    """
    if config.local_path:
        return LocalFSStore(config.local_path)

    if not config.bucket:
        raise ValueError("S3 store requires a bucket")
    return S3Store(
        bucket=config.bucket,
        endpoint_url=config.endpoint or None,
        access_key=config.access_key,
        secret_key=config.secret_key,
        region=config.region or "us-east-1",
        force_path_style=config.force_path_style,
    )
