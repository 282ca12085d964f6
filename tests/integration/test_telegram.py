"""Integration tests: Telegram delivery against the live Bot API.

These tests exercise :class:`~propalert.notifiers.telegram.TelegramDispatcher`
→ :class:`~propalert.notifiers.notifier.Notifier` → Telegram API using real
HTTP.

Default behaviour
-----------------
All tests in this module are marked ``@pytest.mark.integration`` and are
**excluded from the default test run** (``addopts = "-m 'not integration'"``
in ``pyproject.toml``), so routine ``pytest`` invocations never message the
alert chat.

Run on demand::

    pytest -m integration tests/integration/test_telegram.py

Credentials
-----------
Live tests are skipped unless ``TELEGRAM_BOT_TOKEN`` and ``TELEGRAM_CHAT_ID``
are set in the environment or in a ``.env`` file in the project root.
"""

from __future__ import annotations

import logging
import os

import pytest
from dotenv import load_dotenv

from propalert.core.exceptions import DeliveryRejectedError
from propalert.core.models import CandidateListing, NotificationBatch, RankedListing
from propalert.core.run_context import RunContext
from propalert.notifiers.notifier import Notifier
from propalert.notifiers.telegram import TelegramDispatcher

__all__: list[str] = []

logger = logging.getLogger(__name__)

load_dotenv()

_TELEGRAM_CONFIGURED: bool = bool(
    os.environ.get("TELEGRAM_BOT_TOKEN") and os.environ.get("TELEGRAM_CHAT_ID")
)

_skip_if_unconfigured = pytest.mark.skipif(
    not _TELEGRAM_CONFIGURED,
    reason=(
        "TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must be set to run Telegram "
        "integration tests. Add them to .env or export them in your shell."
    ),
)


@pytest.fixture()
def sample_batch() -> NotificationBatch:
    """A clearly-labelled batch; the search name marks it as a test message."""
    listings = [
        CandidateListing(
            listing_id=f"integration-test-{i:03d}",
            address=f"{i} Test Street (integration test), Bristol BS1",
            price=f"£{1000 + i * 50:,} pcm",
            bedrooms=i,
            bathrooms=1,
            image_count=i,
            url=f"https://www.rightmove.co.uk/properties/{900000000 + i}",
        )
        for i in range(1, 3)
    ]
    return NotificationBatch(
        search_name="[Propalert Integration Test] safe to ignore",
        total_new=5,
        entries=tuple(
            RankedListing(listing=listing, score=float(10 - n))
            for n, listing in enumerate(listings)
        ),
    )


@pytest.mark.integration
class TestTelegramIntegration:
    """End-to-end delivery through the real Bot API."""

    async def test_dry_run_makes_no_request(
        self,
        sample_batch: NotificationBatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Dry-run needs no credentials; placeholder values are accepted."""
        async with TelegramDispatcher(token="placeholder:dry_run", chat_id="0") as tg:
            notifier = Notifier(tg, RunContext(dry_run=True))
            with caplog.at_level(logging.INFO, logger="propalert.notifiers.notifier"):
                delivered = await notifier.send_batch(sample_batch)

        assert delivered is False
        assert any("[dry-run]" in r.message for r in caplog.records)

    @_skip_if_unconfigured
    async def test_live_batch(self, sample_batch: NotificationBatch) -> None:
        async with TelegramDispatcher(
            token=os.environ["TELEGRAM_BOT_TOKEN"],
            chat_id=os.environ["TELEGRAM_CHAT_ID"],
        ) as tg:
            notifier = Notifier(tg, RunContext(dry_run=False))
            assert await notifier.send_batch(sample_batch) is True

    @_skip_if_unconfigured
    async def test_live_failure_report(self) -> None:
        async with TelegramDispatcher(
            token=os.environ["TELEGRAM_BOT_TOKEN"],
            chat_id=os.environ["TELEGRAM_CHAT_ID"],
        ) as tg:
            notifier = Notifier(tg, RunContext(dry_run=False))
            reported = await notifier.report_failure(
                "[Propalert Integration Test]",
                RuntimeError("Simulated failure (safe to ignore)."),
            )
        assert reported is True

    @_skip_if_unconfigured
    async def test_bad_token_is_rejected_not_retried(self) -> None:
        async with TelegramDispatcher(
            token="000000:invalid-token",
            chat_id=os.environ["TELEGRAM_CHAT_ID"],
        ) as tg:
            with pytest.raises(DeliveryRejectedError) as exc_info:
                await tg.send("unused")
        assert exc_info.value.status_code in {401, 404}
        assert not exc_info.value.retryable
