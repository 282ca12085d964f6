"""Listing source interface contract.

Every listing source subclasses :class:`BaseListingSource` and implements
:meth:`fetch`.

Design decisions
----------------
* **Abstract base class** rather than a ``Protocol``: subclasses share the
  async context manager lifecycle without duplicating it.
* **``name`` as a class variable**: the orchestrator and log lines can refer
  to the source without constructing it.
* **Typed failures, not empty lists**: unlike a best-effort scraper, a
  monitoring run must tell "no results" apart from "could not look", so
  :meth:`fetch` raises instead of returning ``[]`` on failure.

Typical usage::

    from propalert.providers.base import BaseListingSource


    class MySource(BaseListingSource):
        name = "mysource"

        async def fetch(self, config: SearchConfiguration) -> list[CandidateListing]:
            ...

    async with MySource() as source:
        candidates = await source.fetch(config)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from types import TracebackType
from typing import ClassVar

from propalert.core.models import CandidateListing, SearchConfiguration

__all__ = ["BaseListingSource"]

logger = logging.getLogger(__name__)


class BaseListingSource(ABC):
    """Abstract base for listing sources.

    Attributes:
        name: Short lowercase source name used in errors and logs.
    """

    name: ClassVar[str]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by this source.  No-op by default."""

    async def __aenter__(self) -> BaseListingSource:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch(self, config: SearchConfiguration) -> list[CandidateListing]:
        """Return the current first page of results for *config*.

        Implementations must:

        * Return normalised :class:`CandidateListing` objects in source
          order, possibly an empty list when the search has no results.
        * Not deduplicate against history; that is the tracking store's job.
        * Send only the filters *config* actually sets.

        Raises:
            FetchError: The source could not be reached.
            SourceError: The source answered with a non-success status.
            ParseError: The response could not be decoded or mapped.
        """
