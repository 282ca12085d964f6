"""Selection of the listings that go into one alert.

:class:`NotificationBatcher` caps a run's ranked listings to the best
``cap`` entries while remembering how many new listings there were in
total, so the alert can say "Found 5 new, showing top 3".

Listings cut by the cap are *not* tracked (only delivered listings are), so
they stay unseen and compete again on the next run.

Typical usage::

    batcher = NotificationBatcher(cap=settings.batch_cap)
    batch = batcher.build(ranked, total_new=len(unseen), search_name=config.name)
    if not batch.is_empty:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Final

from propalert.core.models import NotificationBatch, RankedListing

__all__ = ["NotificationBatcher", "DEFAULT_BATCH_CAP"]

logger = logging.getLogger(__name__)

#: Listings per alert when not configured.
DEFAULT_BATCH_CAP: Final[int] = 3


class NotificationBatcher:
    """Build capped :class:`NotificationBatch` objects.

    Args:
        cap: Maximum entries per batch (≥ 1).

    Raises:
        ValueError: If ``cap`` is less than 1.
    """

    def __init__(self, cap: int = DEFAULT_BATCH_CAP) -> None:
        if cap < 1:
            raise ValueError(f"cap must be ≥ 1, got {cap!r}.")
        self._cap = cap

    @property
    def cap(self) -> int:
        return self._cap

    def build(
        self,
        ranked: Sequence[RankedListing],
        total_new: int,
        search_name: str,
    ) -> NotificationBatch:
        """Return the top-``cap`` entries of *ranked* as a batch.

        *ranked* is re-sorted (stably, by descending score) so callers need
        not pre-sort.  ``total_new`` is kept as given even when the batch is
        truncated; it is never less than the number of entries.
        """
        ordered = sorted(ranked, key=lambda r: r.score, reverse=True)
        entries = tuple(ordered[: self._cap])
        batch = NotificationBatch(
            search_name=search_name,
            total_new=max(total_new, len(entries)),
            entries=entries,
        )
        if batch.truncated:
            logger.debug(
                "Batch for %r capped at %d of %d new listing(s)",
                search_name,
                len(entries),
                batch.total_new,
            )
        return batch
