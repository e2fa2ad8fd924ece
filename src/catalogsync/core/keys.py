"""Key derivation between object store keys and catalog locator URLs.

Catalog rows reference objects by a locator URL of the form
``<endpoint>/<bucket>/<key>``; the store lists bare keys. Both sides are
reduced to a NormalizedKey (the bare key) before comparison.
"""

from __future__ import annotations

import mimetypes
from collections.abc import Iterable

# Bump when the derivation rules below change.
KEY_CODEC_VERSION = 1

DEFAULT_MIME_TYPE = "application/octet-stream"


def _prefix(store_endpoint: str, bucket: str) -> str:
    return f"{store_endpoint}/{bucket}/"


def _tidy_prefix(store_endpoint: str, bucket: str) -> str:
    return _prefix(store_endpoint.rstrip("/"), bucket.strip("/"))


def derive_normalized_key(locator_url: str, store_endpoint: str, bucket: str) -> str:
    """Extract the storage key from a catalog locator URL.

    The prefix is ``store_endpoint + "/" + bucket + "/"`` taken literally,
    the way producers build locators. URLs that do not start with it are
    returned unchanged. They still compare, they just will not match any
    store key.
    """
    prefix = _prefix(store_endpoint, bucket)
    if locator_url.startswith(prefix):
        return locator_url[len(prefix) :]
    return locator_url


def storage_key_as_normalized_key(storage_key: str) -> str:
    """Store keys are already normalized."""
    return storage_key


def display_name_from_key(storage_key: str) -> str:
    """Derive a display name from a storage key.

    The upload flow writes ``<type>/<timestamp>-<name>``; the timestamp part
    is dropped. A last segment without ``-`` is returned whole.
    """
    file_name = storage_key.rstrip("/").split("/")[-1]
    _, sep, rest = file_name.partition("-")
    return rest if sep else file_name


# Extensions the upload service types explicitly. Anything else goes
# through the interpreter's built-in table, never the host's mime.types.
_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "csv": "text/csv",
}
_BUILTIN_MIME_TYPES = mimetypes.MimeTypes()


def guess_mime_type(storage_key: str) -> str:
    """Best-effort MIME type from the key's extension."""
    file_name = storage_key.split("/")[-1]
    _, dot, extension = file_name.rpartition(".")
    if dot and extension.lower() in _MIME_TYPES:
        return _MIME_TYPES[extension.lower()]
    mime_type, _ = _BUILTIN_MIME_TYPES.guess_type(file_name)
    return mime_type or DEFAULT_MIME_TYPE


class KeyCodec:
    """Versioned mapping between storage keys and locator URLs.

    A codec is bound to the endpoint and bucket new locators are written
    with. Locators are matched against ``endpoint + "/" + bucket + "/"``
    exactly as producers concatenate them, then against the same prefix with
    stray slashes removed. ``legacy_prefixes`` lists earlier
    ``(endpoint, bucket)`` pairs whose locators must still resolve to the
    same key after a rename.
    """

    version = KEY_CODEC_VERSION

    def __init__(
        self,
        store_endpoint: str,
        bucket: str,
        legacy_prefixes: Iterable[tuple[str, str]] = (),
    ) -> None:
        self._endpoint = store_endpoint
        self._bucket = bucket
        self._prefixes: list[str] = []
        for endpoint, prefix_bucket in [(store_endpoint, bucket), *legacy_prefixes]:
            for prefix in (_prefix(endpoint, prefix_bucket), _tidy_prefix(endpoint, prefix_bucket)):
                if prefix not in self._prefixes:
                    self._prefixes.append(prefix)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def prefixes(self) -> list[str]:
        """All locator prefixes this codec resolves, current first."""
        return list(self._prefixes)

    def normalize_locator(self, locator_url: str) -> str:
        """NormalizedKey of a catalog locator URL."""
        for prefix in self._prefixes:
            if locator_url.startswith(prefix):
                return locator_url[len(prefix) :]
        return locator_url

    def normalize_storage_key(self, storage_key: str) -> str:
        """NormalizedKey of a store object."""
        return storage_key_as_normalized_key(storage_key)

    def locator_for(self, storage_key: str) -> str:
        """Locator URL a new catalog row for ``storage_key`` should carry."""
        return f"{self._prefixes[0]}{storage_key}"

    def is_managed(self, locator_url: str) -> bool:
        """Whether the locator points into a bucket this codec knows about."""
        return any(locator_url.startswith(prefix) for prefix in self._prefixes)

    def __repr__(self) -> str:
        return f"KeyCodec(v{self.version}, {self._prefixes[0]!r})"
