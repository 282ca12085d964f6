"""Rightmove listing source.

Fetches the first page of search results for a
:class:`~propalert.core.models.SearchConfiguration` from Rightmove and maps
each result to a :class:`~propalert.core.models.CandidateListing`.

Response handling
-----------------
The search endpoint normally answers with server-rendered HTML that embeds
the page state in::

    <script id="__NEXT_DATA__" type="application/json">{...}</script>

Results live under ``props.pageProps.searchResults``.  When the endpoint
(or the mobile API behind ``SOURCE_BASE_URL``) answers with JSON instead,
the document is parsed directly and the results container is either the
top-level object or the same ``searchResults`` path.  Two entry shapes are
understood:

* **web**: ``id``, ``displayAddress``, ``price.displayPrices``,
  ``bedrooms``, ``bathrooms``, ``numberOfImages``, ``firstVisibleDate``,
  ``propertyUrl``.
* **api**: ``identifier``, ``address``, ``displayPrices``, ``bedrooms``,
  ``photoCount``.

Compression is handled by :class:`ProviderHttpClient`; this module only ever
sees decoded text.

Query parameters
----------------
``searchType``, ``locationIdentifier`` and ``index`` are always sent.  The
optional filters (``minPrice``, ``maxPrice``, ``minBedrooms``,
``maxBedrooms``, ``minBathrooms``, ``maxBathrooms``, ``furnishTypes``,
``radius``, ``propertyTypes``) are sent only when set on the search; ``0``
counts as set.

Typical usage::

    from propalert.providers.api.rightmove import RightmoveSource

    async with RightmoveSource() as source:
        candidates = await source.fetch(config)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Final

from pydantic import ValidationError

from propalert.core import events
from propalert.core.exceptions import ParseError
from propalert.core.models import (
    CandidateListing,
    SearchConfiguration,
    TransactionType,
)
from propalert.providers.api.http_client import ProviderHttpClient
from propalert.providers.base import BaseListingSource
from propalert.providers.normalizers import (
    absolute_url,
    normalise_count,
    normalise_text,
    parse_timestamp,
)
from propalert.providers.throttle import FetchThrottle

__all__ = ["RightmoveSource", "SearchPage", "build_search_params", "search_path"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_SOURCE: Final[str] = "rightmove"

_DEFAULT_BASE_URL: Final[str] = "https://www.rightmove.co.uk"

#: Results per page; ``index`` advances in steps of this size.
PAGE_SIZE: Final[int] = 24

_SEARCH_PATHS: Final[dict[TransactionType, str]] = {
    TransactionType.RENT: "/property-to-rent/find.html",
    TransactionType.SALE: "/property-for-sale/find.html",
}

#: Tolerates attribute order, extra attributes and whitespace in the tag.
_NEXT_DATA_RE: re.Pattern[str] = re.compile(
    r"<script[^>]*\bid=[\"']__NEXT_DATA__[\"'][^>]*>(.*?)</script>",
    re.DOTALL | re.IGNORECASE,
)

#: Optional search filters in the order they are sent.
_OPTIONAL_PARAMS: Final[tuple[tuple[str, str], ...]] = (
    ("min_price", "minPrice"),
    ("max_price", "maxPrice"),
    ("min_bedrooms", "minBedrooms"),
    ("max_bedrooms", "maxBedrooms"),
    ("min_bathrooms", "minBathrooms"),
    ("max_bathrooms", "maxBathrooms"),
    ("furnish_types", "furnishTypes"),
    ("radius", "radius"),
    ("property_types", "propertyTypes"),
)

#: Pause between pages in :meth:`RightmoveSource.fetch_all`.
_DEFAULT_PAGE_DELAY_S: Final[float] = 1.0


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


def search_path(config: SearchConfiguration) -> str:
    """Return the results path for the search's transaction type."""
    return _SEARCH_PATHS[config.transaction_type]


def build_search_params(config: SearchConfiguration, *, index: int = 0) -> dict[str, str]:
    """Build the query string for one result page.

    Args:
        config: The search to run.
        index: Offset of the first result (page number × :data:`PAGE_SIZE`).

    Returns:
        Parameter name → value, containing only the filters *config* sets.
    """
    params: dict[str, str] = {
        "searchType": config.transaction_type.value,
        "locationIdentifier": config.location_id,
        "index": str(index),
    }
    for attr, param in _OPTIONAL_PARAMS:
        value = getattr(config, attr)
        if value is None:
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        params[param] = str(value)
    return params


# ---------------------------------------------------------------------------
# Response parsing helpers (module-level, stateless)
# ---------------------------------------------------------------------------


def _extract_next_data(html: str) -> Any:
    """Return the decoded ``__NEXT_DATA__`` JSON embedded in *html*.

    Raises:
        ValueError: If the script tag is absent.
        json.JSONDecodeError: If its body is not valid JSON.
    """
    match = _NEXT_DATA_RE.search(html)
    if not match:
        raise ValueError("__NEXT_DATA__ script not found; page structure may have changed")
    return json.loads(match.group(1))


def _decode_document(text: str, content_type: str) -> Any:
    """Decode a response body that is either JSON or HTML with embedded JSON."""
    if "json" in content_type.lower() or text.lstrip().startswith(("{", "[")):
        return json.loads(text)
    return _extract_next_data(text)


def _results_container(document: Any) -> dict[str, Any]:
    """Locate the object holding ``properties`` inside a decoded document.

    Raises:
        ValueError: If no container with a ``properties`` list exists.
    """
    if not isinstance(document, dict):
        raise ValueError(f"expected a JSON object, got {type(document).__name__}")

    candidates: list[Any] = [document]
    props = document.get("props")
    if isinstance(props, dict):
        page_props = props.get("pageProps")
        if isinstance(page_props, dict):
            candidates.insert(0, page_props.get("searchResults"))
    candidates.insert(0, document.get("searchResults"))

    for container in candidates:
        if isinstance(container, dict) and "properties" in container:
            if not isinstance(container["properties"], list):
                raise ValueError("'properties' is not a list")
            return container
    raise ValueError("no search results container with a 'properties' list")


def _total_results(container: dict[str, Any]) -> int | None:
    pagination = container.get("pagination")
    if isinstance(pagination, dict):
        total = normalise_count(pagination.get("total"))
        if total is not None:
            return total
    return normalise_count(
        container.get("totalAvailableResults", container.get("resultCount"))
    )


def _display_price(raw: dict[str, Any]) -> str | None:
    price_block = raw.get("price")
    prices = price_block.get("displayPrices") if isinstance(price_block, dict) else None
    if prices is None:
        prices = raw.get("displayPrices")
    if isinstance(prices, list) and prices and isinstance(prices[0], dict):
        text = normalise_text(prices[0].get("displayPrice"))
        return text or None
    return None


def _map_entry(raw: Any, base_url: str) -> CandidateListing | None:
    """Map one raw result to a :class:`CandidateListing`.

    Returns ``None`` (after logging) for entries without an id or that fail
    validation.
    """
    if not isinstance(raw, dict):
        logger.warning(
            "Rightmove: skipping non-object result entry (%s)",
            type(raw).__name__,
            extra={"event": events.SOURCE_ENTRY_SKIPPED},
        )
        return None

    raw_id = raw.get("id", raw.get("identifier"))
    listing_id = normalise_text(raw_id)
    if not listing_id:
        logger.warning(
            "Rightmove: skipping result without an id",
            extra={"event": events.SOURCE_ENTRY_SKIPPED},
        )
        return None

    raw_address = raw.get("displayAddress", raw.get("address"))
    # Keys are built from the address exactly as served.
    address = raw_address if isinstance(raw_address, str) else normalise_text(raw_address)
    image_count = normalise_count(raw.get("numberOfImages", raw.get("photoCount"))) or 0
    url = absolute_url(
        raw.get("propertyUrl"),
        base_url=base_url,
        fallback_path=f"/properties/{listing_id}",
    )

    try:
        return CandidateListing(
            listing_id=listing_id,
            address=address,
            price=_display_price(raw),
            bedrooms=normalise_count(raw.get("bedrooms")),
            bathrooms=normalise_count(raw.get("bathrooms")),
            image_count=image_count,
            first_visible=parse_timestamp(raw.get("firstVisibleDate")),
            url=url,
        )
    except ValidationError as exc:
        logger.warning(
            "Rightmove: skipping listing %s: %s",
            listing_id,
            exc.errors()[0]["msg"] if exc.errors() else exc,
            extra={"event": events.SOURCE_ENTRY_SKIPPED},
        )
        return None


# ---------------------------------------------------------------------------
# Source class
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SearchPage:
    """One decoded result page.

    Attributes:
        listings: Entries that mapped cleanly, in source order.
        total: Total results reported by the source, if any.
        raw_count: Entries on the page before mapping.
    """

    listings: list[CandidateListing]
    total: int | None
    raw_count: int


class RightmoveSource(BaseListingSource):
    """Listing source backed by Rightmove search results.

    Args:
        http_client: Optional pre-built client (tests, or sharing one pool
            between sources).  When omitted the source creates and owns one.
        base_url: Source base URL; used for requests and to qualify relative
            listing links.
        throttle: Optional shared :class:`FetchThrottle` awaited before every
            request.
        max_attempts: Retry budget for a client created by this source.
    """

    name = _SOURCE

    def __init__(
        self,
        http_client: ProviderHttpClient | None = None,
        *,
        base_url: str = _DEFAULT_BASE_URL,
        throttle: FetchThrottle | None = None,
        max_attempts: int = 3,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_client or ProviderHttpClient(
            _SOURCE,
            base_url=self._base_url,
            max_attempts=max_attempts,
        )
        self._owns_http = http_client is None
        self._throttle = throttle

    # ------------------------------------------------------------------
    # BaseListingSource interface
    # ------------------------------------------------------------------

    async def fetch(self, config: SearchConfiguration) -> list[CandidateListing]:
        """Fetch the first result page for *config*.

        Raises:
            FetchError: Source unreachable after retries.
            SourceError: Non-success HTTP status.
            ParseError: Undecodable body, missing or malformed results, or
                a non-empty page where no entry could be mapped.
        """
        page = await self.fetch_page(config, index=0)
        logger.info(
            "Rightmove: %d listing(s) for %r (total reported: %s)",
            len(page.listings),
            config.key,
            page.total if page.total is not None else "?",
            extra={"event": events.SOURCE_FETCH_OK},
        )
        return page.listings

    async def fetch_all(
        self,
        config: SearchConfiguration,
        *,
        max_pages: int = 10,
        page_delay_s: float = _DEFAULT_PAGE_DELAY_S,
    ) -> list[CandidateListing]:
        """Walk result pages until exhausted, for bulk exports.

        Stops at an empty page, once the reported total is reached, or after
        *max_pages*.  Listings repeated across pages (results shift while
        paging) are kept once.  Not used by monitoring runs.

        Raises:
            ValueError: If *max_pages* is less than 1.
            ListingSourceError: As for :meth:`fetch`, from any page.
        """
        if max_pages < 1:
            raise ValueError(f"max_pages must be ≥ 1, got {max_pages!r}.")

        listings: list[CandidateListing] = []
        seen: set[str] = set()
        for page_no in range(max_pages):
            if page_no and page_delay_s > 0:
                await asyncio.sleep(page_delay_s)

            index = page_no * PAGE_SIZE
            page = await self.fetch_page(config, index=index)
            for listing in page.listings:
                if listing.key not in seen:
                    seen.add(listing.key)
                    listings.append(listing)

            if page.raw_count == 0:
                break
            if page.total is not None and index + PAGE_SIZE >= page.total:
                break

        logger.info(
            "Rightmove: fetched %d listing(s) for %r across up to %d page(s)",
            len(listings),
            config.key,
            max_pages,
        )
        return listings

    async def fetch_page(self, config: SearchConfiguration, *, index: int = 0) -> SearchPage:
        """Fetch and decode the result page starting at *index*."""
        if self._throttle is not None:
            await self._throttle.wait()

        response = await self._http.get(
            search_path(config),
            params=build_search_params(config, index=index),
        )

        try:
            document = _decode_document(
                response.text, response.headers.get("content-type", "")
            )
            container = _results_container(document)
        except (ValueError, UnicodeDecodeError) as exc:
            # json.JSONDecodeError is a ValueError.
            raise ParseError(_SOURCE, f"Unusable response for {config.key!r}: {exc}") from exc

        raw_entries: list[Any] = container["properties"]
        listings = [
            listing
            for listing in (_map_entry(raw, self._base_url) for raw in raw_entries)
            if listing is not None
        ]
        if raw_entries and not listings:
            raise ParseError(
                _SOURCE,
                f"None of the {len(raw_entries)} result(s) for {config.key!r} could be mapped",
            )

        return SearchPage(listings, _total_results(container), len(raw_entries))

    async def close(self) -> None:
        """Close the HTTP client if this source created it."""
        if self._owns_http:
            await self._http.close()
