"""Core domain models, settings, logging configuration, and shared utilities."""

from propalert.core.exceptions import (
    ConfigError,
    DeliveryError,
    DeliveryRejectedError,
    DeliveryTimeoutError,
    FetchError,
    ListingSourceError,
    MonitorError,
    ParseError,
    PropalertError,
    RunTimeoutError,
    SourceError,
    SourceRateLimitError,
    StoreError,
    StoreFlushError,
    StoreLoadError,
)
from propalert.core.keys import listing_key, normalise_address
from propalert.core.logging_config import JsonFormatter, configure_logging
from propalert.core.models import (
    CandidateListing,
    FurnishType,
    NotificationBatch,
    RankedListing,
    SearchConfiguration,
    TrackedListing,
    TransactionType,
)
from propalert.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "CandidateListing",
    "FurnishType",
    "NotificationBatch",
    "RankedListing",
    "SearchConfiguration",
    "TrackedListing",
    "TransactionType",
    # Listing keys
    "listing_key",
    "normalise_address",
    # Settings
    "Settings",
    # Exceptions: base
    "PropalertError",
    "ConfigError",
    # Exceptions: source
    "ListingSourceError",
    "FetchError",
    "SourceError",
    "SourceRateLimitError",
    "ParseError",
    # Exceptions: tracking store
    "StoreError",
    "StoreLoadError",
    "StoreFlushError",
    # Exceptions: delivery
    "DeliveryError",
    "DeliveryTimeoutError",
    "DeliveryRejectedError",
    # Exceptions: orchestrator
    "MonitorError",
    "RunTimeoutError",
]
