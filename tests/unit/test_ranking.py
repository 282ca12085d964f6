"""Unit tests for :mod:`propalert.ranking.scorer`."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from propalert.core.models import CandidateListing
from propalert.ranking.scorer import DEFAULT_WEIGHTS, ScoringWeights, rank, score

_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _make_listing(
    listing_id: str = "1",
    *,
    image_count: int = 0,
    first_visible: datetime | None = None,
) -> CandidateListing:
    return CandidateListing(
        listing_id=listing_id,
        address=f"{listing_id} Test Road",
        image_count=image_count,
        first_visible=first_visible,
        url=f"https://www.rightmove.co.uk/properties/{listing_id}",
    )


class TestScore:
    """Tests for :func:`score`."""

    def test_deterministic(self) -> None:
        listing = _make_listing(image_count=7, first_visible=_NOW - timedelta(days=2))
        assert score(listing, _NOW) == score(listing, _NOW)

    def test_recency_decreases_with_age(self) -> None:
        ages = [timedelta(0), timedelta(hours=6), timedelta(days=1), timedelta(days=6)]
        scores = [score(_make_listing(first_visible=_NOW - age), _NOW) for age in ages]
        assert scores == sorted(scores, reverse=True)
        assert len(set(scores)) == len(scores)

    def test_recency_floors_at_zero(self) -> None:
        old = _make_listing(first_visible=_NOW - timedelta(days=30))
        assert score(old, _NOW) == 0.0

    def test_half_window_is_half_marks(self) -> None:
        listing = _make_listing(first_visible=_NOW - timedelta(days=3, hours=12))
        assert score(listing, _NOW) == pytest.approx(DEFAULT_WEIGHTS.recency_max / 2)

    def test_missing_date_scores_as_new(self) -> None:
        assert score(_make_listing(), _NOW) == DEFAULT_WEIGHTS.recency_max

    def test_future_date_scores_as_new(self) -> None:
        future = _make_listing(first_visible=_NOW + timedelta(hours=3))
        assert score(future, _NOW) == DEFAULT_WEIGHTS.recency_max

    def test_more_images_score_higher(self) -> None:
        few = _make_listing(image_count=2, first_visible=_NOW)
        many = _make_listing(image_count=12, first_visible=_NOW)
        assert score(many, _NOW) > score(few, _NOW)

    def test_images_capped(self) -> None:
        capped = _make_listing(image_count=DEFAULT_WEIGHTS.max_images, first_visible=_NOW)
        beyond = _make_listing(image_count=200, first_visible=_NOW)
        assert score(beyond, _NOW) == score(capped, _NOW) == 90.0

    def test_custom_weights(self) -> None:
        weights = ScoringWeights(recency_max=10.0, points_per_image=1.0, max_images=5)
        listing = _make_listing(image_count=9)
        assert score(listing, _NOW, weights) == 15.0


class TestScoringWeights:
    """Tests for :class:`ScoringWeights` validation."""

    def test_non_positive_window_rejected(self) -> None:
        with pytest.raises(ValueError, match="recency_window"):
            ScoringWeights(recency_window=timedelta(0))

    @pytest.mark.parametrize(
        "kwargs",
        [{"recency_max": -1.0}, {"points_per_image": -0.5}, {"max_images": -1}],
    )
    def test_negative_weights_rejected(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ValueError):
            ScoringWeights(**kwargs)


class TestRank:
    """Tests for :func:`rank`."""

    def test_orders_best_first(self) -> None:
        stale = _make_listing("stale", image_count=1, first_visible=_NOW - timedelta(days=10))
        fresh = _make_listing("fresh", image_count=1, first_visible=_NOW)
        rich = _make_listing("rich", image_count=20, first_visible=_NOW)
        ranked = rank([stale, fresh, rich], _NOW)
        assert [r.listing.listing_id for r in ranked] == ["rich", "fresh", "stale"]
        assert ranked[0].score >= ranked[1].score >= ranked[2].score

    def test_ties_keep_input_order(self) -> None:
        listings = [_make_listing(str(i), image_count=4) for i in range(5)]
        ranked = rank(listings, _NOW)
        assert [r.listing.listing_id for r in ranked] == ["0", "1", "2", "3", "4"]

    def test_empty(self) -> None:
        assert rank([], _NOW) == []
