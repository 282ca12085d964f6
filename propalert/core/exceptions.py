"""Propalert exception taxonomy.

Every custom exception inherits from :class:`PropalertError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    PropalertError
    ├── ConfigError
    ├── ListingSourceError
    │   ├── FetchError
    │   ├── SourceError
    │   │   └── SourceRateLimitError
    │   └── ParseError
    ├── StoreError
    │   ├── StoreLoadError
    │   └── StoreFlushError
    ├── DeliveryError
    │   ├── DeliveryTimeoutError
    │   └── DeliveryRejectedError
    └── MonitorError
        └── RunTimeoutError

Usage:

    from propalert.core.exceptions import FetchError

    raise FetchError("rightmove", "Connection refused") from exc
"""

from __future__ import annotations

import logging

__all__ = [
    "PropalertError",
    # Config
    "ConfigError",
    # Listing source
    "ListingSourceError",
    "FetchError",
    "SourceError",
    "SourceRateLimitError",
    "ParseError",
    # Tracking store
    "StoreError",
    "StoreLoadError",
    "StoreFlushError",
    # Delivery
    "DeliveryError",
    "DeliveryTimeoutError",
    "DeliveryRejectedError",
    # Orchestrator
    "MonitorError",
    "RunTimeoutError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class PropalertError(Exception):
    """Root exception for all Propalert errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(PropalertError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - ``searches.json`` is missing or is not valid JSON.
        - A search entry has ``minPrice`` greater than ``maxPrice``.
        - Live mode is requested without Telegram credentials.
    """


# ---------------------------------------------------------------------------
# Listing source layer
# ---------------------------------------------------------------------------


class ListingSourceError(PropalertError):
    """Base class for all listing-source errors.

    Args:
        source: Short name of the source (e.g. ``"rightmove"``).
        message: Human-readable error description.
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"[{source}] {message}")


class FetchError(ListingSourceError):
    """Raised when the source could not be reached at all.

    Covers DNS failures, refused connections, resets and timeouts: every
    case where no HTTP response was received.
    """


class SourceError(ListingSourceError):
    """Raised when the source answered with a non-success HTTP status.

    Args:
        source: Short name of the source.
        status_code: HTTP status code returned by the source.
        detail: Machine-readable error message from the response body, or a
            short excerpt of the raw body when none could be extracted.
    """

    def __init__(self, source: str, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(source, message)


class SourceRateLimitError(SourceError):
    """Raised when the source returns HTTP 429.

    Args:
        source: Short name of the source.
        retry_after: Recommended back-off interval in seconds, if known.
    """

    def __init__(self, source: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        hint = f"retry after {retry_after}s" if retry_after is not None else "no retry hint"
        super().__init__(source, 429, f"rate limited ({hint})")


class ParseError(ListingSourceError):
    """Raised when a response body cannot be decoded or mapped.

    Covers compressed bodies that fail to decompress, HTML without the
    embedded data block, malformed JSON and result containers of the wrong
    shape.
    """


# ---------------------------------------------------------------------------
# Tracking store layer
# ---------------------------------------------------------------------------


class StoreError(PropalertError):
    """Base class for tracking-store persistence errors.

    Args:
        partition: Search key of the partition involved.
        message: Human-readable error description.
    """

    def __init__(self, partition: str, message: str) -> None:
        self.partition = partition
        super().__init__(f"[{partition}] {message}")


class StoreLoadError(StoreError):
    """Raised when persisted tracking state exists but cannot be read."""


class StoreFlushError(StoreError):
    """Raised when tracking state cannot be written durably.

    Raised after a successful dispatch this means the listings just sent
    are not recorded and may be re-sent on the next run.
    """


# ---------------------------------------------------------------------------
# Delivery layer
# ---------------------------------------------------------------------------


class DeliveryError(PropalertError):
    """Raised when an alert could not be confirmed as delivered.

    Args:
        message: Human-readable error description.
        retryable: ``True`` only when the message certainly did *not* reach
            the channel (connection never established, explicit 429, 5xx).
            A retry is then safe.  ``False`` when delivery is unknown or was
            refused for good.
        retry_after: Seconds the channel asked us to wait, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        retry_after: float | None = None,
    ) -> None:
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)


class DeliveryTimeoutError(DeliveryError):
    """Raised when the channel did not answer within the request timeout.

    The request may or may not have been processed, so this is never
    retryable.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class DeliveryRejectedError(DeliveryError):
    """Raised when the channel answered but did not confirm delivery.

    Args:
        message: Description reported by the channel.
        status_code: HTTP status code of the response.
        retryable: Whether a retry is safe (429 and 5xx only).
        retry_after: Seconds to wait before retrying, for HTTP 429.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        *,
        retryable: bool = False,
        retry_after: float | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(
            f"HTTP {status_code}: {message}",
            retryable=retryable,
            retry_after=retry_after,
        )


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class MonitorError(PropalertError):
    """Raised for errors originating in the run orchestration layer."""


class RunTimeoutError(MonitorError):
    """Raised when a monitoring run exceeds its wall-clock budget.

    Args:
        search_key: Partition key of the run that timed out.
        timeout_s: The budget that was exceeded, in seconds.
    """

    def __init__(self, search_key: str, timeout_s: float) -> None:
        self.search_key = search_key
        self.timeout_s = timeout_s
        super().__init__(f"Run for {search_key!r} exceeded {timeout_s:g}s")
