"""Shared async HTTP client for listing sources.

Wraps :class:`httpx.AsyncClient` with:

* **User-Agent rotation**: a curated pool of modern browser UA strings; a
  random UA is injected into every outgoing request.
* **Automatic retries**: exponential back-off with random jitter via
  :mod:`tenacity`, for transport failures, HTTP 5xx and HTTP 429 only.
  Source requests are idempotent GETs, so a retry can never cause a
  duplicate alert.
* **Rate-limit awareness**: HTTP 429 pauses for the ``Retry-After`` value,
  then raises :class:`~propalert.core.exceptions.SourceRateLimitError` once
  retries are exhausted.
* **Transparent decompression**: gzip, deflate and brotli bodies are decoded
  by httpx (brotli via the ``httpx[brotli]`` extra).  A body that fails to
  decode raises :class:`~propalert.core.exceptions.ParseError`.
* **Typed error mapping**: no response at all →
  :class:`~propalert.core.exceptions.FetchError`; any other non-2xx →
  :class:`~propalert.core.exceptions.SourceError` carrying the status code
  and the machine-readable message from the body.

One instance is shared by every run of an invocation to reuse the
connection pool.

Typical usage::

    from propalert.providers.api.http_client import ProviderHttpClient

    async with ProviderHttpClient("rightmove", base_url="https://www.rightmove.co.uk") as c:
        response = await c.get("/property-to-rent/find.html", params={...})
"""

from __future__ import annotations

import json
import logging
import random
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from propalert.core.exceptions import (
    FetchError,
    ParseError,
    SourceError,
    SourceRateLimitError,
)

__all__ = ["ProviderHttpClient"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes that signal a transient server-side fault (safe to retry).
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

#: Default connection timeout in seconds.
_DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0

#: Default timeout waiting for the response body.
_DEFAULT_READ_TIMEOUT: Final[float] = 20.0

#: Default total attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Hard cap on exponential back-off base before adding jitter (seconds).
_MAX_BACKOFF_BASE: Final[float] = 60.0

#: Upper bound on jitter added on top of the exponential base (seconds).
_MAX_BACKOFF_JITTER: Final[float] = 10.0

#: Longest body excerpt carried in a :class:`SourceError` detail.
_DETAIL_MAX_CHARS: Final[int] = 200

# ---------------------------------------------------------------------------
# User-Agent pool
# ---------------------------------------------------------------------------

_USER_AGENTS: Final[list[str]] = [
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/129.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/129.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (X11; Linux x86_64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/129.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:131.0) "
        "Gecko/20100101 Firefox/131.0"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.6; rv:131.0) "
        "Gecko/20100101 Firefox/131.0"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_6_1) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/18.0 Safari/605.1.15"
    ),
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/129.0.0.0 Safari/537.36 Edg/129.0.0.0"
    ),
    (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 18_0 like Mac OS X) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/18.0 Mobile/15E148 Safari/604.1"
    ),
]


def _pick_user_agent() -> str:
    return random.choice(_USER_AGENTS)


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(SourceError):
    """Internal: signals a 5xx status for tenacity to retry.

    Converted to a plain :class:`SourceError` before leaving
    :meth:`ProviderHttpClient._request_with_retry`.
    """


# ---------------------------------------------------------------------------
# Retry wait strategy
# ---------------------------------------------------------------------------


def _source_wait(retry_state: RetryCallState) -> float:
    """Compute the wait duration before the next retry attempt.

    * :class:`SourceRateLimitError` with a positive ``retry_after`` → honour
      that value exactly.
    * Everything else → exponential back-off with random jitter, capped at
      :data:`_MAX_BACKOFF_BASE` seconds.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if (
            isinstance(exc, SourceRateLimitError)
            and exc.retry_after is not None
            and exc.retry_after > 0
        ):
            logger.debug("Honouring source Retry-After of %.1f s", exc.retry_after)
            return exc.retry_after

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    jitter = random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))
    return base + jitter


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class ProviderHttpClient:
    """Async HTTP client shared by listing sources.

    :meth:`get` returns the :class:`httpx.Response` on HTTP 2xx, with the
    body already read and decompressed, and raises a typed
    :class:`~propalert.core.exceptions.ListingSourceError` on every other
    outcome.

    Use as an ``async with`` context manager to guarantee the connection
    pool is closed on exit.

    Args:
        source: Short source name used in error messages (``"rightmove"``).
        base_url: Base URL prepended to relative request paths.
        headers: Extra default headers merged into every request.  The
            rotated ``User-Agent`` always wins.
        connect_timeout: TCP connection establishment timeout in seconds.
        read_timeout: Timeout for receiving the response.
        max_attempts: Total attempts including the initial try (≥ 1).
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        source: str,
        *,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._source = source
        self._base_url = base_url
        self._default_headers: dict[str, str] = headers or {}
        self._max_attempts = max_attempts
        self._transport = transport
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=10.0,
            pool=5.0,
        )
        self._http: httpx.AsyncClient | None = None

    @property
    def source(self) -> str:
        return self._source

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ProviderHttpClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public request methods
    # ------------------------------------------------------------------

    async def get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform an HTTP GET request with retries and UA rotation.

        Args:
            url: The request URL or path (relative to ``base_url`` if set).
            params: Optional query-string parameters.
            headers: Per-request headers that override session defaults.

        Returns:
            The :class:`httpx.Response` on HTTP 2xx.

        Raises:
            FetchError: No response could be obtained (after retries).
            SourceRateLimitError: HTTP 429 after exhausting retries.
            SourceError: Any other non-2xx status.
            ParseError: The body could not be decompressed.
        """
        return await self._request_with_retry("GET", url, params=params, extra_headers=headers)

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call more than once."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("ProviderHttpClient session closed (%s).", self._source)
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "Accept": "text/html,application/json;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-GB,en;q=0.9",
                    "Accept-Encoding": "gzip, deflate, br",
                    "Cache-Control": "no-cache",
                    "Pragma": "no-cache",
                    **self._default_headers,
                },
            )
            logger.debug(
                "ProviderHttpClient session opened (source=%s, base_url=%r).",
                self._source,
                self._base_url or "(none)",
            )
        return self._http

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Execute one request with tenacity-managed retries and map failures."""
        retry_types = (
            _RetryableServerError,
            SourceRateLimitError,
            httpx.TransportError,
        )

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "HTTP %s %s: attempt %d/%d failed (%s). Retrying in %.1f s",
                method,
                url,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
                _source_wait(rs),
            )

        response: httpx.Response | None = None
        try:
            async for attempt in AsyncRetrying(
                wait=_source_wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(retry_types),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    response = await self._single_request(
                        method=method,
                        url=url,
                        params=params,
                        extra_headers=extra_headers,
                    )
        except _RetryableServerError as exc:
            raise SourceError(self._source, exc.status_code, exc.detail) from exc
        except httpx.DecodingError as exc:
            raise ParseError(self._source, f"Could not decode response body: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise FetchError(self._source, f"Timed out requesting {url}: {exc!r}") from exc
        except httpx.RequestError as exc:
            raise FetchError(self._source, f"Request to {url} failed: {exc!r}") from exc

        assert response is not None, "tenacity exited without a response or exception"
        return response

    async def _single_request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        extra_headers: dict[str, str] | None,
    ) -> httpx.Response:
        """Perform exactly one HTTP request.

        Raises:
            SourceRateLimitError: On HTTP 429.
            _RetryableServerError: On HTTP 5xx.
            SourceError: On other non-2xx statuses.
            httpx.RequestError: Network or decoding failures, propagated
                for the retry loop to classify.
        """
        client = await self._ensure_client()

        ua = _pick_user_agent()
        request_headers: dict[str, str] = {"User-Agent": ua}
        if extra_headers:
            request_headers.update(extra_headers)

        logger.debug("HTTP %s %s params=%s (ua_hint=%s…)", method, url, params, ua[:40])

        response = await client.request(
            method=method,
            url=url,
            params=params,
            headers=request_headers,
        )

        logger.debug(
            "HTTP %s %s → %d (%s, %d bytes)",
            method,
            url,
            response.status_code,
            response.headers.get("content-encoding", "identity"),
            len(response.content),
        )

        if response.is_success:
            return response

        if response.status_code == 429:
            retry_after = _parse_retry_after(response)
            logger.warning(
                "Source rate limit (%s) HTTP 429, retry_after=%.1f s",
                self._source,
                retry_after,
            )
            raise SourceRateLimitError(self._source, retry_after=retry_after)

        detail = _extract_detail(response)
        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(self._source, response.status_code, detail)

        raise SourceError(self._source, response.status_code, detail)


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _parse_retry_after(response: httpx.Response) -> float:
    """Extract back-off seconds from an HTTP 429 response (≥ 1.0)."""
    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            logger.debug("Could not parse Retry-After header %r.", header)

    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return 1.0
    if isinstance(body, dict):
        ra = body.get("retryAfter") or body.get("retry_after")
        if ra is not None:
            try:
                return max(float(ra), 1.0)
            except (TypeError, ValueError):
                pass
    return 1.0


def _extract_detail(response: httpx.Response) -> str:
    """Return the machine-readable error message carried by *response*.

    JSON bodies are searched for ``title``/``detail``/``message``/``error``
    (joined when both ``title`` and ``detail`` are present).  Otherwise the
    first :data:`_DETAIL_MAX_CHARS` characters of the body are returned.
    """
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None

    if isinstance(body, dict):
        parts = [
            str(body[field]).strip()
            for field in ("title", "detail", "message", "error")
            if isinstance(body.get(field), (str, int)) and str(body[field]).strip()
        ]
        if parts:
            return ": ".join(parts[:2])

    return response.text.strip()[:_DETAIL_MAX_CHARS]
