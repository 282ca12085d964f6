"""Tracking state: which listings were already alerted, per search."""

from propalert.storage.backends import (
    JsonFileBackend,
    MemoryBackend,
    SqliteBackend,
    TrackingBackend,
)
from propalert.storage.database import create_schema, open_db
from propalert.storage.tracking import DEFAULT_MAX_ENTRIES, TrackingStore

__all__ = [
    "DEFAULT_MAX_ENTRIES",
    "JsonFileBackend",
    "MemoryBackend",
    "SqliteBackend",
    "TrackingBackend",
    "TrackingStore",
    "create_schema",
    "open_db",
]
