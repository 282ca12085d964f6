"""High-level alert entry point for propalert.

Provides :class:`Notifier`, the single object a monitor run calls to deliver
an alert.  It owns the decision of *whether* to send (based on
:class:`~propalert.core.run_context.RunContext`), the retry policy, and
delegates to:

* :mod:`~propalert.notifiers.formatter` for message formatting.
* :class:`~propalert.notifiers.telegram.TelegramDispatcher` for transport
  (one attempt per call).

Retry policy
------------
Only :class:`~propalert.core.exceptions.DeliveryError` instances flagged
``retryable`` are retried (connection never established, HTTP 429, HTTP 5xx).
A timeout after the request went out is **not** retried: Telegram may have
delivered the message, and a retry would duplicate the alert.  HTTP 429
waits for Telegram's ``retry_after``; everything else backs off
exponentially.

Failure reports
---------------
:meth:`Notifier.report_failure` and :meth:`Notifier.report_flush_failure`
are best-effort: they never raise, so an unreachable Telegram cannot mask
the error being reported.

Typical usage::

    from propalert.notifiers.notifier import Notifier
    from propalert.notifiers.telegram import TelegramDispatcher
    from propalert.core.run_context import RunContext

    async with TelegramDispatcher(token, chat_id) as dispatcher:
        notifier = Notifier(dispatcher, RunContext(dry_run=False))
        delivered = await notifier.send_batch(batch)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Final

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from propalert.core import events
from propalert.core.exceptions import DeliveryError
from propalert.core.models import NotificationBatch
from propalert.core.run_context import RunContext
from propalert.notifiers.formatter import (
    PARSE_MODE,
    format_batch,
    format_failure,
    format_flush_failure,
)
from propalert.notifiers.telegram import TelegramDispatcher

__all__ = ["Notifier"]

logger = logging.getLogger(__name__)

#: Default total delivery attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Cap on the exponential back-off between delivery attempts (seconds).
_MAX_BACKOFF: Final[float] = 30.0


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, DeliveryError) and exc.retryable


def _delivery_wait(retry_state: RetryCallState) -> float:
    """Wait before the next delivery attempt.

    Honours ``retry_after`` from a 429 answer; otherwise 1 s, 2 s, 4 s, ...
    capped at :data:`_MAX_BACKOFF`.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if isinstance(exc, DeliveryError) and exc.retry_after:
            return exc.retry_after
    attempt = max(retry_state.attempt_number, 1)
    return min(2.0 ** (attempt - 1), _MAX_BACKOFF)


class Notifier:
    """Formats and delivers alerts, honouring the run mode.

    * **dry-run mode** (``ctx.dry_run=True``): formats each message and logs
      it at ``INFO`` level instead of sending it.  Nothing is delivered, so
      :meth:`send_batch` returns ``False``.
    * **live mode**: formats and sends via Telegram with bounded retries.

    Args:
        dispatcher: Open :class:`TelegramDispatcher`.  The Notifier does
            **not** manage its lifecycle.
        ctx: Runtime operating mode flags.
        max_attempts: Total delivery attempts per message (≥ 1).
    """

    def __init__(
        self,
        dispatcher: TelegramDispatcher,
        ctx: RunContext,
        *,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")
        self._dispatcher = dispatcher
        self._ctx = ctx
        self._max_attempts = max_attempts

    @property
    def ctx(self) -> RunContext:
        return self._ctx

    async def send_batch(self, batch: NotificationBatch) -> bool:
        """Deliver *batch* as one alert.

        Returns:
            ``True`` if Telegram confirmed delivery.  ``False`` in dry-run
            mode (the message is only logged).

        Raises:
            ValueError: If *batch* is empty.
            DeliveryError: Delivery failed; retryable failures are raised
                only after all attempts are used.
        """
        text = format_batch(batch)
        keys = [entry.listing.key for entry in batch.entries]

        if not self._ctx.should_notify:
            logger.info(
                "[dry-run] Would send %d listing(s) for %r\n%s",
                len(keys),
                batch.search_name,
                text,
                extra={"event": events.BATCH_DRY_RUN},
            )
            return False

        try:
            await self._send_with_retry(text)
        except DeliveryError as exc:
            logger.error(
                "Failed to deliver %d listing(s) for %r: %s",
                len(keys),
                batch.search_name,
                exc,
                extra={"event": events.DELIVERY_ERROR},
            )
            raise

        logger.info(
            "Alert sent for %r: %d listing(s) (%d new)",
            batch.search_name,
            len(keys),
            batch.total_new,
            extra={"event": events.BATCH_DISPATCHED},
        )
        return True

    async def report_failure(self, search_name: str, error: BaseException | str) -> bool:
        """Best-effort alert that a run for *search_name* failed.

        Returns ``True`` if the report was delivered; never raises.
        """
        return await self._report(search_name, format_failure(search_name, error))

    async def report_flush_failure(
        self,
        search_name: str,
        keys: Sequence[str],
        error: BaseException | str,
    ) -> bool:
        """Best-effort alert that delivered listings could not be recorded."""
        return await self._report(
            search_name, format_flush_failure(search_name, keys, error)
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _report(self, search_name: str, text: str) -> bool:
        if not self._ctx.should_notify:
            logger.info(
                "[dry-run] Would send error report for %r\n%s",
                search_name,
                text,
                extra={"event": events.BATCH_DRY_RUN},
            )
            return False
        try:
            await self._send_with_retry(text)
        except DeliveryError as exc:
            logger.error(
                "Could not deliver error report for %r: %s",
                search_name,
                exc,
                extra={"event": events.ERROR_REPORT_FAILED},
            )
            return False
        logger.info(
            "Error report sent for %r",
            search_name,
            extra={"event": events.ERROR_REPORTED},
        )
        return True

    async def _send_with_retry(self, text: str) -> None:
        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Delivery attempt %d/%d failed (%s). Retrying in %.1f s",
                rs.attempt_number,
                self._max_attempts,
                exc,
                _delivery_wait(rs),
                extra={"event": events.DELIVERY_RETRY},
            )

        async for attempt in AsyncRetrying(
            wait=_delivery_wait,
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
            before_sleep=_before_sleep,
        ):
            with attempt:
                await self._dispatcher.send(text, parse_mode=PARSE_MODE)
