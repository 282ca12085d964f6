"""HTTP-backed listing sources: Rightmove."""

from propalert.providers.api.http_client import ProviderHttpClient
from propalert.providers.api.rightmove import RightmoveSource

__all__ = ["ProviderHttpClient", "RightmoveSource"]
