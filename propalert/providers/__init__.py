"""Listing sources and the helpers they share."""

from propalert.providers.api.rightmove import RightmoveSource
from propalert.providers.base import BaseListingSource
from propalert.providers.throttle import FetchThrottle

__all__ = ["BaseListingSource", "FetchThrottle", "RightmoveSource"]
