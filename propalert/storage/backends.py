"""Persistence backends for tracking partitions.

A *partition* is the list of :class:`~propalert.core.models.TrackedListing`
records for one search key.  A backend only knows how to load and replace a
whole partition; membership, pruning and ordering rules live in
:class:`~propalert.storage.tracking.TrackingStore`.

Backends
--------
:class:`MemoryBackend`
    Process-local dict.  Used by tests and dry experiments.
:class:`JsonFileBackend`
    One ``sent-properties-<partition>.json`` file per search in an explicit
    directory.  Writes go to a temporary file that is fsynced and then
    atomically renamed over the target, so a crash never leaves a torn file.
:class:`SqliteBackend`
    One ``tracked_listings`` table keyed by ``(partition, key)``.  A save
    replaces one partition inside a single transaction.  Saves are
    serialised with an :class:`asyncio.Lock` because every run shares one
    connection.

Failure contract: unreadable or corrupt state raises
:class:`~propalert.core.exceptions.StoreLoadError`; a write that cannot be
made durable raises :class:`~propalert.core.exceptions.StoreFlushError`.
A partition that was never written loads as an empty list.

Typical usage::

    backend = JsonFileBackend(settings.tracking_dir_resolved)
    records = await backend.load("bristol-flats")
    await backend.save("bristol-flats", records)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Final

import aiosqlite
from pydantic import TypeAdapter, ValidationError

from propalert.core.exceptions import StoreFlushError, StoreLoadError
from propalert.core.models import TrackedListing

__all__ = [
    "TrackingBackend",
    "MemoryBackend",
    "JsonFileBackend",
    "SqliteBackend",
]

logger = logging.getLogger(__name__)

#: File name pattern used by :class:`JsonFileBackend`.
TRACKING_FILE_TEMPLATE: Final[str] = "sent-properties-{partition}.json"

_RECORDS: Final[TypeAdapter[list[TrackedListing]]] = TypeAdapter(list[TrackedListing])


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class TrackingBackend(ABC):
    """Load and replace whole tracking partitions."""

    @abstractmethod
    async def load(self, partition: str) -> list[TrackedListing]:
        """Return the stored records for *partition*, oldest insertion first.

        Raises:
            StoreLoadError: Stored state exists but cannot be read.
        """

    @abstractmethod
    async def save(self, partition: str, records: Sequence[TrackedListing]) -> None:
        """Durably replace *partition* with *records*.

        Raises:
            StoreFlushError: The write could not be completed.
        """


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class MemoryBackend(TrackingBackend):
    """Keeps partitions in a dict; nothing survives the process."""

    def __init__(self) -> None:
        self._partitions: dict[str, list[TrackedListing]] = {}

    async def load(self, partition: str) -> list[TrackedListing]:
        return list(self._partitions.get(partition, ()))

    async def save(self, partition: str, records: Sequence[TrackedListing]) -> None:
        self._partitions[partition] = list(records)

    def partitions(self) -> list[str]:
        return sorted(self._partitions)


# ---------------------------------------------------------------------------
# JSON files
# ---------------------------------------------------------------------------


class JsonFileBackend(TrackingBackend):
    """One JSON array per partition under *directory*.

    File I/O runs in a worker thread so a slow disk does not stall the other
    runs on the event loop.

    Args:
        directory: Directory holding the tracking files.  Created on first
            save if missing.
    """

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, partition: str) -> Path:
        return self._directory / TRACKING_FILE_TEMPLATE.format(partition=partition)

    async def load(self, partition: str) -> list[TrackedListing]:
        return await asyncio.to_thread(self._load_sync, partition)

    async def save(self, partition: str, records: Sequence[TrackedListing]) -> None:
        await asyncio.to_thread(self._save_sync, partition, list(records))

    # ------------------------------------------------------------------
    # Blocking helpers
    # ------------------------------------------------------------------

    def _load_sync(self, partition: str) -> list[TrackedListing]:
        path = self.path_for(partition)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            logger.debug("No tracking file for %r at %s; starting empty", partition, path)
            return []
        except OSError as exc:
            raise StoreLoadError(partition, f"cannot read {path}: {exc}") from exc

        try:
            return _RECORDS.validate_json(data)
        except ValidationError as exc:
            raise StoreLoadError(
                partition,
                f"{path} is corrupt: {exc.error_count()} problem(s), "
                f"first: {exc.errors()[0]['msg']}",
            ) from exc

    def _save_sync(self, partition: str, records: list[TrackedListing]) -> None:
        path = self.path_for(partition)
        payload = _RECORDS.dump_json(records, by_alias=True, indent=2)
        tmp_name: str | None = None
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="wb",
                dir=self._directory,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise StoreFlushError(partition, f"cannot write {path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)

        logger.debug("Wrote %d record(s) to %s", len(records), path)


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


class SqliteBackend(TrackingBackend):
    """Partitions stored as rows of the ``tracked_listings`` table.

    Args:
        conn: Open connection with the schema from
            :func:`~propalert.storage.database.open_db`.  Not closed by the
            backend.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn
        self._lock = asyncio.Lock()

    async def load(self, partition: str) -> list[TrackedListing]:
        try:
            cursor = await self._conn.execute(
                """
                SELECT key, listing_id, address, price, bedrooms, bathrooms, url, first_seen
                FROM tracked_listings
                WHERE partition = ?
                ORDER BY seq
                """,
                (partition,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StoreLoadError(partition, f"query failed: {exc}") from exc

        try:
            return [
                TrackedListing(
                    key=row["key"],
                    listing_id=row["listing_id"],
                    address=row["address"],
                    price=row["price"],
                    bedrooms=row["bedrooms"],
                    bathrooms=row["bathrooms"],
                    url=row["url"],
                    first_seen=datetime.fromisoformat(row["first_seen"]),
                )
                for row in rows
            ]
        except (ValueError, ValidationError) as exc:
            # ValidationError is a ValueError; both mean a corrupt row.
            raise StoreLoadError(partition, f"corrupt row: {exc}") from exc

    async def save(self, partition: str, records: Sequence[TrackedListing]) -> None:
        rows = [
            (
                partition,
                record.key,
                record.listing_id,
                record.address,
                record.price,
                record.bedrooms,
                record.bathrooms,
                record.url,
                record.first_seen.isoformat(),
                seq,
            )
            for seq, record in enumerate(records)
        ]
        async with self._lock:
            try:
                await self._conn.execute(
                    "DELETE FROM tracked_listings WHERE partition = ?", (partition,)
                )
                await self._conn.executemany(
                    """
                    INSERT INTO tracked_listings
                        (partition, key, listing_id, address, price, bedrooms,
                         bathrooms, url, first_seen, seq)
                    VALUES
                        (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                await self._conn.commit()
            except aiosqlite.Error as exc:
                with contextlib.suppress(aiosqlite.Error):
                    await self._conn.rollback()
                raise StoreFlushError(partition, f"write failed: {exc}") from exc

        logger.debug("Saved %d record(s) for partition %r", len(rows), partition)
