"""Propalert core domain models.

This module defines the value types shared by the source, tracking, ranking,
notification and orchestration layers:

* :class:`SearchConfiguration`: one saved search (one tracking partition).
* :class:`CandidateListing`: a listing as returned by the source.
* :class:`TrackedListing`: a listing that has been alerted on.
* :class:`RankedListing`: a candidate paired with its score.
* :class:`NotificationBatch`: the capped set of listings for one alert.

All models are **frozen** pydantic models: they can be hashed, shared
between coroutines and never mutated after validation.

Typical usage::

    from propalert.core.models import CandidateListing, SearchConfiguration

    config = SearchConfiguration.model_validate(
        {"key": "bristol-flats", "name": "Bristol flats", "searchType": "RENT",
         "locationId": "REGION^219", "maxPrice": 1500}
    )
    listing = CandidateListing(
        listing_id="152345678",
        address="Gloucester Road, Bristol BS7",
        price="£1,350 pcm",
        url="https://www.rightmove.co.uk/properties/152345678",
    )
    listing.key  # "152345678-gloucester-road,-bristol-bs7"
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from propalert.core.keys import listing_key

__all__ = [
    "TransactionType",
    "FurnishType",
    "SearchConfiguration",
    "CandidateListing",
    "TrackedListing",
    "RankedListing",
    "NotificationBatch",
    "DEFAULT_PRICE_LABEL",
]

logger = logging.getLogger(__name__)

#: Price text used when the source gives no display price.
DEFAULT_PRICE_LABEL: str = "Price on request"

# Partition keys end up in file names; keep them to a safe alphabet.
_SEARCH_KEY_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9_.-]+$")

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TransactionType(StrEnum):
    """Whether a search looks for properties to buy or to rent."""

    SALE = "SALE"
    RENT = "RENT"


class FurnishType(StrEnum):
    """Furnishing filter values accepted by the source."""

    FURNISHED = "furnished"
    UNFURNISHED = "unfurnished"
    FURNISHED_OR_UNFURNISHED = "furnished_or_unfurnished"


# ---------------------------------------------------------------------------
# Search configuration
# ---------------------------------------------------------------------------


class SearchConfiguration(BaseModel):
    """A saved search: source filters plus the partition it tracks into.

    Field names follow Python style; the camelCase names used in
    ``searches.json`` are accepted as aliases.  Every optional filter left
    as ``None`` is *absent* and is never sent to the source; ``0`` is a
    real constraint.

    Attributes:
        key: Tracking partition identifier (the key in ``searches.json``).
        name: Display name used in alert headers.
        transaction_type: :class:`TransactionType` (``searchType``).
        location_id: Source location identifier (``locationId``), e.g.
            ``"REGION^87490"``.
        min_price / max_price: Price bounds in whole pounds.
        min_bedrooms / max_bedrooms: Bedroom bounds.
        min_bathrooms / max_bathrooms: Bathroom bounds.
        furnish_types: Furnishing filter.
        radius: Search radius in miles around the location.
        property_types: Comma-separated source property types
            (e.g. ``"flat,detached"``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    key: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    transaction_type: TransactionType = Field(..., alias="searchType")
    location_id: str = Field(..., min_length=1, alias="locationId")
    min_price: int | None = Field(None, ge=0, alias="minPrice")
    max_price: int | None = Field(None, ge=0, alias="maxPrice")
    min_bedrooms: int | None = Field(None, ge=0, alias="minBedrooms")
    max_bedrooms: int | None = Field(None, ge=0, alias="maxBedrooms")
    min_bathrooms: int | None = Field(None, ge=0, alias="minBathrooms")
    max_bathrooms: int | None = Field(None, ge=0, alias="maxBathrooms")
    furnish_types: FurnishType | None = Field(None, alias="furnishTypes")
    radius: float | None = Field(None, ge=0)
    property_types: str | None = Field(None, alias="propertyTypes")

    @field_validator("key")
    @classmethod
    def _key_is_slug(cls, v: str) -> str:
        if not _SEARCH_KEY_RE.match(v):
            raise ValueError(
                f"search key {v!r} may only contain letters, digits, '.', '_' and '-'"
            )
        return v

    @field_validator("transaction_type", mode="before")
    @classmethod
    def _upper_transaction_type(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("property_types", mode="before")
    @classmethod
    def _join_property_types(cls, v: object) -> object:
        """Accept a list of types as well as the comma-separated form."""
        if isinstance(v, (list, tuple)):
            v = ",".join(str(item).strip() for item in v if str(item).strip())
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _check_ranges(self) -> SearchConfiguration:
        """Ensure ``min <= max`` for every bounded pair that sets both."""
        pairs = (
            ("price", self.min_price, self.max_price),
            ("bedrooms", self.min_bedrooms, self.max_bedrooms),
            ("bathrooms", self.min_bathrooms, self.max_bathrooms),
        )
        for label, low, high in pairs:
            if low is not None and high is not None and low > high:
                raise ValueError(f"min {label} ({low}) is greater than max {label} ({high})")
        return self


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class CandidateListing(BaseModel):
    """Normalised listing as fetched from the source.

    Attributes:
        listing_id: Source-assigned identifier (opaque, stable).
        address: Display address.
        price: Display price text; :data:`DEFAULT_PRICE_LABEL` when absent.
        bedrooms: Bedroom count, ``None`` if not stated.
        bathrooms: Bathroom count, ``None`` if not stated.
        image_count: Number of photos attached to the listing.
        first_visible: When the listing first became visible on the source.
            Naive datetimes are taken to be UTC.  ``None`` if not stated.
        url: Fully-qualified link to the listing page.
    """

    model_config = ConfigDict(frozen=True)

    listing_id: str = Field(..., min_length=1)
    address: str = Field(default="")
    price: str = Field(default=DEFAULT_PRICE_LABEL)
    bedrooms: int | None = Field(None, ge=0)
    bathrooms: int | None = Field(None, ge=0)
    image_count: int = Field(default=0, ge=0)
    first_visible: datetime | None = None
    url: str = Field(..., min_length=1)

    @field_validator("price", mode="before")
    @classmethod
    def _blank_price_to_default(cls, v: object) -> object:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_PRICE_LABEL
        return v

    @field_validator("first_visible")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @property
    def key(self) -> str:
        """Stable identity of this listing within a tracking partition."""
        return listing_key(self.listing_id, self.address)


class TrackedListing(BaseModel):
    """A listing that has been delivered in an alert for one search.

    Serialised with the field names of the tracking files
    (``{key, id, address, price, bedrooms, bathrooms, url, firstSeen}``);
    the older ``propertyUrl`` name is accepted on load.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str = Field(..., min_length=1)
    listing_id: str = Field(..., alias="id")
    address: str = ""
    price: str = DEFAULT_PRICE_LABEL
    bedrooms: int | None = None
    bathrooms: int | None = None
    url: str = Field(
        default="",
        validation_alias=AliasChoices("url", "propertyUrl"),
        serialization_alias="url",
    )
    first_seen: datetime = Field(..., alias="firstSeen")

    @field_validator("listing_id", mode="before")
    @classmethod
    def _coerce_id(cls, v: object) -> object:
        # Older files store numeric ids.
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("first_seen")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @classmethod
    def from_candidate(cls, listing: CandidateListing, seen_at: datetime) -> TrackedListing:
        """Build the tracking record for a delivered *listing*."""
        return cls(
            key=listing.key,
            listing_id=listing.listing_id,
            address=listing.address,
            price=listing.price,
            bedrooms=listing.bedrooms,
            bathrooms=listing.bathrooms,
            url=listing.url,
            first_seen=seen_at,
        )


class RankedListing(BaseModel):
    """A candidate paired with its score."""

    model_config = ConfigDict(frozen=True)

    listing: CandidateListing
    score: float


class NotificationBatch(BaseModel):
    """The listings that go out together in one alert message.

    Attributes:
        search_name: Display name of the search, for the alert header.
        total_new: How many unseen listings this run found, including
            those cut by the batch cap.
        entries: At most *cap* ranked listings, highest score first.
    """

    model_config = ConfigDict(frozen=True)

    search_name: str
    total_new: int = Field(..., ge=0)
    entries: tuple[RankedListing, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def truncated(self) -> bool:
        """``True`` when the cap dropped some new listings from this batch."""
        return self.total_new > len(self.entries)

    @property
    def listings(self) -> list[CandidateListing]:
        return [entry.listing for entry in self.entries]
