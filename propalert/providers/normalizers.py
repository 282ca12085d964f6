"""Field normalisation helpers for listing sources.

Source ``_map_entry`` functions use these helpers to turn raw JSON values
into the typed fields of :class:`~propalert.core.models.CandidateListing`.
Each helper tolerates the shapes seen in practice (numbers sent as strings,
``"3+"`` counts, ISO timestamps with or without ``Z``) and returns ``None``
(or a fallback) instead of raising, so one odd field never drops a listing.

**ID contract**
---------------
Sources set ``CandidateListing.listing_id`` to the raw, source-local id.
They never build tracking keys themselves; see :mod:`propalert.core.keys`.

Typical usage::

    from propalert.providers.normalizers import (
        absolute_url,
        normalise_count,
        normalise_text,
        parse_timestamp,
    )

    bedrooms = normalise_count(raw.get("bedrooms"))
    seen     = parse_timestamp(raw.get("firstVisibleDate"))
    url      = absolute_url(raw.get("propertyUrl"), base_url=base,
                            fallback_path=f"/properties/{raw['id']}")
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "normalise_text",
    "normalise_count",
    "parse_timestamp",
    "absolute_url",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_WHITESPACE_RE: re.Pattern[str] = re.compile(r"\s+")

# Trailing "+" in open-ended counts (e.g. "5+").
_TRAILING_PLUS_RE: re.Pattern[str] = re.compile(r"\+\s*$")


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


def normalise_text(value: Any, *, fallback: str = "") -> str:
    """Strip and collapse whitespace in a text value.

    Non-string scalars are converted with ``str()``; ``None``, dicts and
    lists yield *fallback*.

    Examples::

        normalise_text("  12  High   St ")  # → "12 High St"
        normalise_text(None)                # → ""
    """
    if value is None or isinstance(value, (dict, list)):
        return fallback
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned if cleaned else fallback


# ---------------------------------------------------------------------------
# Numeric parsing
# ---------------------------------------------------------------------------


def normalise_count(value: Any) -> int | None:
    """Parse a bedroom/bathroom/photo count.

    Handles plain ints, numeric strings and ``"N+"`` notation.  Negative,
    absent or unparseable values give ``None``.  Booleans are rejected
    rather than read as 0/1.

    Examples::

        normalise_count(3)      # → 3
        normalise_count("5+")   # → 5
        normalise_count("n/a")  # → None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if value >= 0 else None
    stripped = _TRAILING_PLUS_RE.sub("", str(value)).strip()
    try:
        parsed = int(stripped)
    except ValueError:
        logger.debug("normalise_count: cannot parse %r; returning None", value)
        return None
    return parsed if parsed >= 0 else None


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z``; naive values are taken to be UTC.  Epoch
    milliseconds (as sent by the mobile API) are accepted too.  Anything
    else gives ``None``.

    Examples::

        parse_timestamp("2026-10-18T09:15:00Z")  # → 2026-10-18 09:15:00+00:00
        parse_timestamp(None)                    # → None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            logger.debug("parse_timestamp: epoch value %r out of range", value)
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("parse_timestamp: cannot parse %r; returning None", value)
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


# ---------------------------------------------------------------------------
# URL normalisation
# ---------------------------------------------------------------------------


def absolute_url(
    path_or_url: Any,
    *,
    base_url: str,
    fallback_path: str,
) -> str:
    """Return a fully-qualified listing URL.

    Absolute URLs pass through; relative paths are joined to *base_url*
    with exactly one ``/``; a missing value falls back to
    ``base_url + fallback_path``.  Non-string values (numbers, objects) count
    as missing.

    Examples::

        absolute_url("/properties/1", base_url="https://x.test", fallback_path="/")
        # → "https://x.test/properties/1"

        absolute_url(None, base_url="https://x.test", fallback_path="/properties/9")
        # → "https://x.test/properties/9"
    """
    if not isinstance(path_or_url, str) or not path_or_url.strip():
        return base_url.rstrip("/") + fallback_path
    path_or_url = path_or_url.strip()
    if path_or_url.startswith(("http://", "https://")):
        return path_or_url
    return base_url.rstrip("/") + "/" + path_or_url.lstrip("/")
