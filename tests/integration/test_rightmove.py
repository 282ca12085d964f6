"""Integration tests: the Rightmove source against the live site.

These tests catch response-shape regressions (the site changing its JSON or
page structure) before they show up as failed monitoring runs.  They check
that our request is still accepted and that results map into valid
:class:`~propalert.core.models.CandidateListing` objects.

Marked ``@pytest.mark.integration`` and excluded from the default run.
Skipped unless ``RIGHTMOVE_LOCATION_ID`` (e.g. ``REGION^219``) is set in the
environment or ``.env``::

    RIGHTMOVE_LOCATION_ID='REGION^219' pytest -m integration tests/integration/test_rightmove.py
"""

from __future__ import annotations

import logging
import os

import pytest
from dotenv import load_dotenv

from propalert.core.models import SearchConfiguration, TransactionType
from propalert.providers.api.rightmove import RightmoveSource
from propalert.providers.throttle import FetchThrottle

__all__: list[str] = []

logger = logging.getLogger(__name__)

load_dotenv()

_LOCATION_ID: str = os.environ.get("RIGHTMOVE_LOCATION_ID", "")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not _LOCATION_ID,
        reason="RIGHTMOVE_LOCATION_ID must be set to run Rightmove integration tests.",
    ),
]


def _make_config(transaction_type: TransactionType) -> SearchConfiguration:
    return SearchConfiguration(
        key="integration",
        name="Integration",
        transaction_type=transaction_type,
        location_id=_LOCATION_ID,
        min_bedrooms=1,
    )


class TestRightmoveLive:
    """Live fetches; results vary, so only shape is asserted."""

    @pytest.mark.parametrize("transaction_type", list(TransactionType))
    async def test_fetch_maps_listings(self, transaction_type: TransactionType) -> None:
        async with RightmoveSource(throttle=FetchThrottle(1.0)) as source:
            listings = await source.fetch(_make_config(transaction_type))

        logger.info("Fetched %d %s listing(s)", len(listings), transaction_type)
        assert listings, "expected at least one live result for a populated region"
        for listing in listings:
            assert listing.listing_id
            assert listing.url.startswith("https://")
            assert listing.key.startswith(f"{listing.listing_id}-")

    async def test_fetch_all_two_pages(self) -> None:
        async with RightmoveSource(throttle=FetchThrottle(1.0)) as source:
            listings = await source.fetch_all(_make_config(TransactionType.RENT), max_pages=2)
        keys = [listing.key for listing in listings]
        assert len(keys) == len(set(keys))
