"""Core module - Shared types, key derivation, and configuration."""

from catalogsync.core.config import EventsConfig, Settings, StoreConfig
from catalogsync.core.keys import (
    KEY_CODEC_VERSION,
    KeyCodec,
    derive_normalized_key,
    display_name_from_key,
    guess_mime_type,
    storage_key_as_normalized_key,
)
from catalogsync.core.types import (
    SYSTEM_ACTOR,
    MetadataRecord,
    ReconciliationResult,
    RepairAction,
    RepairFailure,
    RunReport,
    StorageObject,
)

__all__ = [
    # Config
    "EventsConfig",
    "Settings",
    "StoreConfig",
    # Keys
    "KEY_CODEC_VERSION",
    "KeyCodec",
    "derive_normalized_key",
    "display_name_from_key",
    "guess_mime_type",
    "storage_key_as_normalized_key",
    # Types
    "SYSTEM_ACTOR",
    "MetadataRecord",
    "ReconciliationResult",
    "RepairAction",
    "RepairFailure",
    "RunReport",
    "StorageObject",
]
