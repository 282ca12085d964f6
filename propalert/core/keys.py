"""Listing key strategy for Propalert.

A *listing key* identifies one real-world listing inside a tracking
partition.  It combines the source-assigned id with the normalised display
address::

    "<listing_id>-<address, lowercased, whitespace runs replaced by '-'>"

e.g. ``listing_key("152345678", "Gloucester Road,  Bristol")`` is
``"152345678-gloucester-road,-bristol"``.  Tracking files written before
this package existed use the same format, so their state loads unchanged.

Rules
-----
* Sources set ``CandidateListing.listing_id`` to the raw source id and never
  compute keys themselves; :attr:`CandidateListing.key` calls
  :func:`listing_key`.
* Two candidates with equal keys are the same listing, even if their price
  or photo count changed between fetches.

Typical usage::

    from propalert.core.keys import listing_key

    key = listing_key(raw["id"], raw["displayAddress"])
"""

from __future__ import annotations

import logging
import re

__all__ = ["listing_key", "normalise_address"]

logger = logging.getLogger(__name__)

#: Separator between the listing id and the normalised address.
LISTING_KEY_SEPARATOR: str = "-"

_WHITESPACE_RE: re.Pattern[str] = re.compile(r"\s+")


def normalise_address(address: str) -> str:
    """Return the address component of a listing key.

    Replaces every run of whitespace (non-breaking spaces included) with
    ``-`` and lowercases.  Leading and trailing whitespace is not trimmed:
    it becomes a leading or trailing ``-``, as in existing tracking files.
    """
    return _WHITESPACE_RE.sub("-", address).lower()


def listing_key(listing_id: str, address: str) -> str:
    """Return the tracking key for a listing.

    Args:
        listing_id: Source-assigned identifier.
        address: Display address as returned by the source.

    Returns:
        ``"<listing_id>-<normalised address>"``.

    Example::

        assert listing_key("42", "1 High St") == "42-1-high-st"
    """
    return f"{listing_id}{LISTING_KEY_SEPARATOR}{normalise_address(address)}"
