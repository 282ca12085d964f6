"""Relevance scoring for unseen listings.

Provides a pure, deterministic score that favours fresh listings with many
photos, and :func:`rank` to order candidates by it.

Score
-----
``score = recency + richness`` where

* **recency** = ``recency_max × max(0, 1 − age / recency_window)``: full
  marks for a listing that appeared just now, falling linearly to zero once
  it is ``recency_window`` old.  A listing whose first-visible date is
  missing is treated as brand new; a date in the future counts as age zero.
* **richness** = ``points_per_image × min(image_count, max_images)``.

With :data:`DEFAULT_WEIGHTS` the score lies in ``[0, 90]``: up to 50 for
recency over a 7-day window and up to 40 for 20 or more photos.

The clock is always injected (``now``); nothing here reads the system time.

Typical usage::

    from propalert.ranking.scorer import rank

    ranked = rank(unseen, now=datetime.now(UTC))
    best = ranked[0].listing
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from propalert.core.models import CandidateListing, RankedListing

__all__ = ["ScoringWeights", "DEFAULT_WEIGHTS", "score", "rank"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    """Tunable constants of the score.

    Attributes:
        recency_max: Points for a listing of age zero.
        recency_window: Age at which recency reaches zero.
        points_per_image: Points per photo.
        max_images: Photos beyond this count earn nothing.
    """

    recency_max: float = 50.0
    recency_window: timedelta = timedelta(days=7)
    points_per_image: float = 2.0
    max_images: int = 20

    def __post_init__(self) -> None:
        if self.recency_window <= timedelta(0):
            raise ValueError(f"recency_window must be positive, got {self.recency_window!r}.")
        if self.recency_max < 0 or self.points_per_image < 0 or self.max_images < 0:
            raise ValueError("scoring weights must be non-negative")


DEFAULT_WEIGHTS = ScoringWeights()


def _recency(candidate: CandidateListing, now: datetime, weights: ScoringWeights) -> float:
    if candidate.first_visible is None:
        return weights.recency_max
    age = now - candidate.first_visible
    if age <= timedelta(0):
        return weights.recency_max
    fraction = 1.0 - age / weights.recency_window
    return weights.recency_max * max(0.0, fraction)


def score(
    candidate: CandidateListing,
    now: datetime,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> float:
    """Return the relevance score of *candidate* at time *now*.

    Args:
        candidate: Listing to score.
        now: Timezone-aware reference time.
        weights: Score constants.

    Returns:
        A non-negative float; higher is more relevant.
    """
    richness = weights.points_per_image * min(candidate.image_count, weights.max_images)
    return _recency(candidate, now, weights) + richness


def rank(
    candidates: Iterable[CandidateListing],
    now: datetime,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> list[RankedListing]:
    """Score *candidates* and order them best first.

    The sort is stable, so candidates with equal scores keep their input
    (source) order.
    """
    ranked = [RankedListing(listing=c, score=score(c, now, weights)) for c in candidates]
    ranked.sort(key=lambda r: r.score, reverse=True)
    return ranked
