"""Telegram Bot API alert dispatcher.

Provides :class:`TelegramDispatcher`, an async wrapper around the Bot API's
``sendMessage`` endpoint that makes **exactly one attempt** per call and
reports the outcome as a typed exception:

* HTTP 200 with ``{"ok": true}``: delivered.
* Connection never established (DNS, refused, connect timeout):
  :class:`~propalert.core.exceptions.DeliveryError` with ``retryable=True``.
* Timeout after the request was sent:
  :class:`~propalert.core.exceptions.DeliveryTimeoutError`, not retryable,
  because Telegram may have delivered the message.
* HTTP 429 / 5xx: :class:`~propalert.core.exceptions.DeliveryRejectedError`
  with ``retryable=True`` (and ``retry_after`` for 429).
* Any other status, ``ok: false`` or an unparseable body:
  :class:`~propalert.core.exceptions.DeliveryRejectedError`, not retryable.

Retrying is the caller's decision.  The orchestrator retries only
``retryable`` errors, so a message is never duplicated by a blind retry.

Message formatting lives in :mod:`propalert.notifiers.formatter`; the
dry-run gate lives in :mod:`propalert.notifiers.notifier`.

Typical usage::

    async with TelegramDispatcher(token="123:ABC", chat_id="-1001234") as tg:
        await tg.send("Hello\\!")
"""

from __future__ import annotations

import json
import logging
from typing import Final

import httpx

from propalert.core.exceptions import (
    DeliveryError,
    DeliveryRejectedError,
    DeliveryTimeoutError,
)

__all__ = ["TelegramDispatcher"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TELEGRAM_BASE_URL: Final[str] = "https://api.telegram.org"

#: Statuses returned before Telegram processed the message; safe to retry.
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})

#: Default overall request timeout in seconds.
_DEFAULT_TIMEOUT: Final[float] = 10.0


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class TelegramDispatcher:
    """Single-attempt Telegram ``sendMessage`` client.

    Manages one :class:`httpx.AsyncClient` for the object lifetime.  Use as
    an ``async with`` context manager, or call :meth:`close` when done.

    Args:
        token: Bot token as provided by @BotFather (non-empty).
        chat_id: Destination chat identifier (non-empty).
        timeout_s: Overall request timeout in seconds.
        base_url: API base URL; overridable for tests.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).

    Raises:
        ValueError: If ``token``, ``chat_id`` or ``timeout_s`` are invalid.
    """

    def __init__(
        self,
        token: str,
        chat_id: str,
        *,
        timeout_s: float = _DEFAULT_TIMEOUT,
        base_url: str = _TELEGRAM_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("TelegramDispatcher requires a non-empty token.")
        if not chat_id:
            raise ValueError("TelegramDispatcher requires a non-empty chat_id.")
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0, got {timeout_s!r}.")

        self._token = token
        self._chat_id = chat_id
        self._base_url = base_url
        self._transport = transport
        self._timeout = httpx.Timeout(timeout_s)
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TelegramDispatcher:
        await self._ensure_http_client()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, text: str, *, parse_mode: str = "MarkdownV2") -> None:
        """Send *text* to the configured chat, once.

        Args:
            text: Ready-to-send message, already escaped for *parse_mode*.
            parse_mode: Telegram parse mode; ``""`` sends plain text.

        Raises:
            DeliveryError: Connection could not be established (retryable)
                or another transport failure occurred (not retryable).
            DeliveryTimeoutError: No answer within the timeout.
            DeliveryRejectedError: Telegram answered without confirming
                delivery.
        """
        client = await self._ensure_http_client()
        endpoint = f"/bot{self._token}/sendMessage"

        payload: dict[str, object] = {
            "chat_id": self._chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        logger.debug(
            "Telegram POST sendMessage (chat_id=%s, chars=%d, parse_mode=%r)",
            self._chat_id,
            len(text),
            parse_mode,
        )

        try:
            response = await client.post(endpoint, json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise DeliveryError(
                f"Could not connect to Telegram: {exc!r}", retryable=True
            ) from exc
        except httpx.TimeoutException as exc:
            raise DeliveryTimeoutError(
                f"Telegram did not answer within {self._timeout.read}s: {exc!r}"
            ) from exc
        except httpx.RequestError as exc:
            raise DeliveryError(f"Telegram request failed: {exc!r}") from exc

        logger.debug("Telegram response: HTTP %d", response.status_code)

        if response.status_code == 200:
            _assert_telegram_ok(response)
            return

        description = _extract_description(response)
        if response.status_code == 429:
            retry_after = _parse_retry_after(response)
            logger.warning("Telegram rate limit (HTTP 429), retry_after=%.1f s", retry_after)
            raise DeliveryRejectedError(
                description, 429, retryable=True, retry_after=retry_after
            )

        raise DeliveryRejectedError(
            description,
            response.status_code,
            retryable=response.status_code in _RETRYABLE_STATUS,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call more than once."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("TelegramDispatcher HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"User-Agent": "propalert/0.1"},
            )
            logger.debug("TelegramDispatcher HTTP session opened.")
        return self._http


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _assert_telegram_ok(response: httpx.Response) -> None:
    """Verify an HTTP-200 response body is ``{"ok": true, ...}``.

    Telegram occasionally answers 200 with ``"ok": false``; that is not a
    delivery.

    Raises:
        DeliveryRejectedError: Body is not JSON or ``ok`` is not true.
    """
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DeliveryRejectedError(f"unparseable response body: {exc}", 200) from exc

    if not isinstance(body, dict) or body.get("ok") is not True:
        description = (
            body.get("description", "(no description)")
            if isinstance(body, dict)
            else "(not an object)"
        )
        raise DeliveryRejectedError(f"ok=false: {description}", 200)


def _parse_retry_after(response: httpx.Response) -> float:
    """Extract the back-off delay from a 429 response (≥ 1.0 s).

    Prefers ``parameters.retry_after`` in the JSON body, then the
    ``Retry-After`` header.
    """
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    if isinstance(body, dict):
        parameters = body.get("parameters")
        if isinstance(parameters, dict) and parameters.get("retry_after") is not None:
            try:
                return max(float(parameters["retry_after"]), 1.0)
            except (TypeError, ValueError):
                pass

    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            pass

    return 1.0


def _extract_description(response: httpx.Response) -> str:
    """Return Telegram's ``description`` field, or the raw body text."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("description"):
        return str(body["description"])
    return response.text[:200] or f"HTTP {response.status_code}"
