"""Tracking store: which listings have already been alerted for one search.

:class:`TrackingStore` wraps a single partition of a
:class:`~propalert.storage.backends.TrackingBackend`.  It is loaded once at
the start of a monitoring run, consulted to drop already-alerted
candidates, updated with the listings that were actually delivered, pruned
to the history cap and flushed back, in that order.

Contract
--------
* A record is added **only** through :meth:`TrackingStore.record_sent`, and
  the orchestrator calls it only after a confirmed delivery.  Nothing here
  records listings speculatively.
* :meth:`filter_unseen` is a pure read: calling it twice on the same input
  gives the same answer and changes nothing.
* Membership is a ``set`` lookup, so filtering is linear in the number of
  candidates whatever the history size.
* :meth:`prune` keeps the most recent ``max_entries`` by ``first_seen``;
  records with equal timestamps keep their insertion order.

Typical usage::

    store = await TrackingStore.open(backend, "bristol-flats", max_entries=1000)
    unseen = store.filter_unseen(candidates)
    ...  # rank, batch, deliver
    store.record_sent(batch.listings, seen_at=now)
    store.prune()
    await store.flush()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Final

from propalert.core import events
from propalert.core.models import CandidateListing, TrackedListing
from propalert.storage.backends import TrackingBackend

__all__ = ["TrackingStore", "DEFAULT_MAX_ENTRIES"]

logger = logging.getLogger(__name__)

#: Default history cap per partition.
DEFAULT_MAX_ENTRIES: Final[int] = 1000


class TrackingStore:
    """In-memory view of one tracking partition.

    Prefer :meth:`open` over the constructor; it loads the partition from
    the backend.

    Args:
        backend: Where the partition is persisted.
        partition: Search key.
        records: Records already loaded for the partition.
        max_entries: Default cap used by :meth:`prune`.

    Raises:
        ValueError: If ``max_entries`` is less than 1.
    """

    def __init__(
        self,
        backend: TrackingBackend,
        partition: str,
        records: Iterable[TrackedListing] = (),
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be ≥ 1, got {max_entries!r}.")
        self._backend = backend
        self._partition = partition
        self._max_entries = max_entries
        self._records: list[TrackedListing] = []
        self._keys: set[str] = set()
        self._dirty = False
        for record in records:
            # Files edited by hand can repeat a key; keep the first.
            if record.key not in self._keys:
                self._keys.add(record.key)
                self._records.append(record)

    @classmethod
    async def open(
        cls,
        backend: TrackingBackend,
        partition: str,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> TrackingStore:
        """Load *partition* from *backend*.

        Raises:
            StoreLoadError: The stored state exists but cannot be read.
        """
        records = await backend.load(partition)
        store = cls(backend, partition, records, max_entries=max_entries)
        logger.debug(
            "Loaded %d tracked listing(s) for %r",
            len(store),
            partition,
            extra={"event": events.STORE_LOADED},
        )
        return store

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def partition(self) -> str:
        return self._partition

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def dirty(self) -> bool:
        """``True`` when there are changes not yet flushed."""
        return self._dirty

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[TrackedListing]:
        return iter(tuple(self._records))

    def filter_unseen(self, candidates: Iterable[CandidateListing]) -> list[CandidateListing]:
        """Return candidates not yet tracked, in input order.

        A key repeated within *candidates* is returned once (first
        occurrence).
        """
        unseen: list[CandidateListing] = []
        batch_keys: set[str] = set()
        for candidate in candidates:
            key = candidate.key
            if key in self._keys or key in batch_keys:
                continue
            batch_keys.add(key)
            unseen.append(candidate)
        return unseen

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def record_sent(self, listings: Iterable[CandidateListing], seen_at: datetime) -> int:
        """Track *listings* as delivered at *seen_at*.

        Keys already tracked are left untouched, so recording the same
        delivery twice is harmless.

        Returns:
            Number of records added.
        """
        added = 0
        for listing in listings:
            record = TrackedListing.from_candidate(listing, seen_at)
            if record.key in self._keys:
                continue
            self._keys.add(record.key)
            self._records.append(record)
            added += 1
        if added:
            self._dirty = True
        return added

    def prune(self, max_entries: int | None = None) -> int:
        """Evict the oldest records so at most *max_entries* remain.

        Args:
            max_entries: Cap to apply; defaults to the store's own.

        Returns:
            Number of records evicted.
        """
        cap = self._max_entries if max_entries is None else max_entries
        if cap < 1:
            raise ValueError(f"max_entries must be ≥ 1, got {cap!r}.")
        excess = len(self._records) - cap
        if excess <= 0:
            return 0

        # Stable sort: equal timestamps stay in insertion order.
        ordered = sorted(
            enumerate(self._records), key=lambda pair: (pair[1].first_seen, pair[0])
        )
        evicted = {index for index, _ in ordered[:excess]}
        self._records = [r for i, r in enumerate(self._records) if i not in evicted]
        self._keys = {r.key for r in self._records}
        self._dirty = True
        logger.debug(
            "Pruned %d tracked listing(s) from %r (cap %d)",
            excess,
            self._partition,
            cap,
            extra={"event": events.STORE_PRUNED},
        )
        return excess

    async def flush(self) -> None:
        """Persist the partition through the backend.

        Raises:
            StoreFlushError: The backend could not write durably.
        """
        await self._backend.save(self._partition, self._records)
        self._dirty = False
        logger.debug(
            "Flushed %d tracked listing(s) for %r",
            len(self._records),
            self._partition,
            extra={"event": events.STORE_FLUSHED},
        )
