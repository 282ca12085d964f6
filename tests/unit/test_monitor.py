"""Unit tests for :class:`~propalert.orchestrator.monitor.MonitorRun`.

The source and the Telegram dispatcher are replaced by in-process fakes;
the tracking store, ranking, batching and :class:`Notifier` are real, so
these tests exercise the full load → fetch → filter → rank → batch →
dispatch → commit path.

Covers:
- Happy path and outcome counters.
- "Tracked iff delivered": failed or dry-run delivery leaves state alone.
- Dedup across runs and the batch cap carrying unsent listings forward.
- Partition isolation and the history cap.
- Error handling per state: load, fetch, dispatch, flush, timeout.
- Run-id context propagation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from propalert.core.exceptions import (
    DeliveryRejectedError,
    FetchError,
    RunTimeoutError,
    StoreFlushError,
    StoreLoadError,
)
from propalert.core.logging_config import RUN_LOG_CTX, RunLogFields
from propalert.core.models import (
    CandidateListing,
    SearchConfiguration,
    TrackedListing,
    TransactionType,
)
from propalert.core.run_context import RunContext
from propalert.notifiers import notifier as notifier_module
from propalert.notifiers.batcher import NotificationBatcher
from propalert.notifiers.notifier import Notifier
from propalert.notifiers.telegram import TelegramDispatcher
from propalert.orchestrator.monitor import MonitorRun, RunState
from propalert.providers.base import BaseListingSource
from propalert.storage.backends import MemoryBackend

logger = logging.getLogger(__name__)

_NOW = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Fakes / helpers
# ---------------------------------------------------------------------------


class _FakeSource(BaseListingSource):
    """Returns canned results (or raises) and records what it was asked."""

    name = "fake"

    def __init__(
        self,
        results: Sequence[CandidateListing] = (),
        *,
        error: BaseException | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self.results = list(results)
        self.error = error
        self.delay_s = delay_s
        self.calls: list[str] = []
        self.log_fields: list[RunLogFields] = []

    async def fetch(self, config: SearchConfiguration) -> list[CandidateListing]:
        self.calls.append(config.key)
        self.log_fields.append(RUN_LOG_CTX.get())
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return list(self.results)


class _FailingBackend(MemoryBackend):
    """MemoryBackend whose load or save can be made to fail."""

    def __init__(self, *, fail_load: bool = False, fail_save: bool = False) -> None:
        super().__init__()
        self.fail_load = fail_load
        self.fail_save = fail_save

    async def load(self, partition: str) -> list[TrackedListing]:
        if self.fail_load:
            raise StoreLoadError(partition, "file is corrupt")
        return await super().load(partition)

    async def save(self, partition: str, records: Sequence[TrackedListing]) -> None:
        if self.fail_save:
            raise StoreFlushError(partition, "disk full")
        await super().save(partition, records)


def _make_config(key: str = "bristol-flats", name: str = "Bristol flats") -> SearchConfiguration:
    return SearchConfiguration(
        key=key,
        name=name,
        transaction_type=TransactionType.RENT,
        location_id="REGION^219",
    )


def _make_listing(listing_id: str, *, image_count: int = 0, age_h: float = 1.0) -> CandidateListing:
    return CandidateListing(
        listing_id=listing_id,
        address=f"{listing_id} Park Row, Bristol",
        price="£1,100 pcm",
        bedrooms=2,
        bathrooms=1,
        image_count=image_count,
        first_visible=_NOW - timedelta(hours=age_h),
        url=f"https://www.rightmove.co.uk/properties/{listing_id}",
    )


def _make_notifier(
    *,
    dry_run: bool = False,
    side_effect: Any = None,
) -> tuple[Notifier, AsyncMock]:
    dispatcher = MagicMock(spec=TelegramDispatcher)
    dispatcher.send = AsyncMock(side_effect=side_effect)
    return Notifier(dispatcher, RunContext(dry_run=dry_run)), dispatcher.send


def _make_run(
    source: BaseListingSource,
    backend: MemoryBackend,
    notifier: Notifier,
    *,
    config: SearchConfiguration | None = None,
    **kwargs: Any,
) -> MonitorRun:
    return MonitorRun(
        config or _make_config(),
        source,
        backend,
        notifier,
        clock=lambda: _NOW,
        **kwargs,
    )


async def _tracked_ids(backend: MemoryBackend, partition: str = "bristol-flats") -> list[str]:
    return [r.listing_id for r in await backend.load(partition)]


@pytest.fixture(autouse=True)
def _no_delivery_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notifier_module, "_delivery_wait", lambda _rs: 0.0)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestHappyPath:
    """A run that finds, sends and records new listings."""

    async def test_sends_and_records(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier()
        source = _FakeSource([_make_listing("1"), _make_listing("2")])

        outcome = await _make_run(source, backend, notifier).run()

        assert outcome.ok
        assert outcome.state is RunState.DONE
        assert (outcome.fetched, outcome.new, outcome.sent) == (2, 2, 2)
        assert outcome.error is None and outcome.failed_state is None
        send.assert_awaited_once()
        assert sorted(await _tracked_ids(backend)) == ["1", "2"]

    async def test_records_seen_at_run_time(self) -> None:
        backend = MemoryBackend()
        notifier, _ = _make_notifier()
        await _make_run(_FakeSource([_make_listing("1")]), backend, notifier).run()
        (record,) = await backend.load("bristol-flats")
        assert record.first_seen == _NOW

    async def test_no_candidates_sends_nothing(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier()
        outcome = await _make_run(_FakeSource([]), backend, notifier).run()
        assert outcome.ok
        assert outcome.sent == 0
        send.assert_not_awaited()
        assert backend.partitions() == []

    async def test_second_run_is_idempotent(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier()
        source = _FakeSource([_make_listing("1"), _make_listing("2")])

        await _make_run(source, backend, notifier).run()
        second = await _make_run(source, backend, notifier).run()

        assert second.ok
        assert (second.fetched, second.new, second.sent) == (2, 0, 0)
        assert send.await_count == 1

    async def test_cap_carries_remainder_to_next_run(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier()
        # Image counts give a strict ranking: 5 > 4 > 3 > 2 > 1.
        listings = [_make_listing(str(i), image_count=i) for i in range(1, 6)]
        source = _FakeSource(listings)

        first = await _make_run(
            source, backend, notifier, batcher=NotificationBatcher(cap=3)
        ).run()
        assert (first.new, first.sent) == (5, 3)
        assert "Found 5 new, showing top 3" in send.await_args.args[0]
        assert sorted(await _tracked_ids(backend)) == ["3", "4", "5"]

        second = await _make_run(
            source, backend, notifier, batcher=NotificationBatcher(cap=3)
        ).run()
        assert (second.new, second.sent) == (2, 2)
        assert sorted(await _tracked_ids(backend)) == ["1", "2", "3", "4", "5"]

    async def test_best_listing_first_in_alert(self) -> None:
        notifier, send = _make_notifier()
        source = _FakeSource(
            [_make_listing("old", age_h=24 * 6), _make_listing("fresh", image_count=10)]
        )
        await _make_run(source, MemoryBackend(), notifier).run()
        text = send.await_args.args[0]
        assert text.index("fresh Park Row") < text.index("old Park Row")


# ---------------------------------------------------------------------------
# Tracking contract
# ---------------------------------------------------------------------------


class TestTrackingContract:
    """Listings are recorded if and only if they were delivered."""

    async def test_failed_delivery_records_nothing(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier(side_effect=DeliveryRejectedError("Bad Request", 400))

        outcome = await _make_run(_FakeSource([_make_listing("1")]), backend, notifier).run()

        assert not outcome.ok
        assert outcome.failed_state is RunState.DISPATCHING
        assert isinstance(outcome.error, DeliveryRejectedError)
        assert await _tracked_ids(backend) == []
        # Batch attempt + error report attempt.
        assert send.await_count == 2

    async def test_listing_offered_again_after_failed_delivery(self) -> None:
        backend = MemoryBackend()
        source = _FakeSource([_make_listing("1")])
        failing, _ = _make_notifier(side_effect=DeliveryRejectedError("busy", 503, retryable=True))
        await _make_run(source, backend, failing).run()

        notifier, _ = _make_notifier()
        outcome = await _make_run(source, backend, notifier).run()
        assert outcome.sent == 1
        assert await _tracked_ids(backend) == ["1"]

    async def test_dry_run_never_commits(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier(dry_run=True)
        source = _FakeSource([_make_listing("1")])

        first = await _make_run(source, backend, notifier).run()
        second = await _make_run(source, backend, notifier).run()

        assert first.ok and second.ok
        assert first.sent == 0
        assert second.new == 1
        send.assert_not_awaited()
        assert backend.partitions() == []

    async def test_commit_follows_context_not_only_delivery(self) -> None:
        backend = MemoryBackend()
        notifier = MagicMock(spec=Notifier)
        notifier.ctx = RunContext(dry_run=True)
        notifier.send_batch = AsyncMock(return_value=True)

        outcome = await _make_run(_FakeSource([_make_listing("1")]), backend, notifier).run()

        assert outcome.ok
        assert outcome.sent == 0
        assert backend.partitions() == []

    async def test_partitions_are_isolated(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier()
        source = _FakeSource([_make_listing("1")])

        await _make_run(source, backend, notifier, config=_make_config("a", "A")).run()
        other = await _make_run(source, backend, notifier, config=_make_config("b", "B")).run()

        assert other.sent == 1
        assert send.await_count == 2
        assert await _tracked_ids(backend, "a") == ["1"]
        assert await _tracked_ids(backend, "b") == ["1"]

    async def test_history_cap_bounds_partition(self) -> None:
        backend = MemoryBackend()
        notifier, _ = _make_notifier()
        for batch_start in (0, 3, 6):
            source = _FakeSource([_make_listing(str(i)) for i in range(batch_start, batch_start + 3)])
            await _make_run(source, backend, notifier, history_cap=4).run()
        assert len(await backend.load("bristol-flats")) == 4

    async def test_history_cap_equal_to_batch_keeps_sent_listings(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier()
        source = _FakeSource([_make_listing(str(i)) for i in range(3)])

        first = await _make_run(
            source, backend, notifier, batcher=NotificationBatcher(3), history_cap=3
        ).run()
        second = await _make_run(
            source, backend, notifier, batcher=NotificationBatcher(3), history_cap=3
        ).run()

        assert first.sent == 3
        assert second.new == 0
        assert send.await_count == 1

    def test_history_cap_below_batch_cap_rejected(self) -> None:
        notifier, _ = _make_notifier()
        with pytest.raises(ValueError, match="history_cap"):
            _make_run(
                _FakeSource([]), MemoryBackend(), notifier,
                batcher=NotificationBatcher(3), history_cap=1,
            )


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    """Failures end the run ERRORED with exactly one error report."""

    async def test_load_error_stops_before_fetch(self) -> None:
        source = _FakeSource([_make_listing("1")])
        notifier, send = _make_notifier()

        outcome = await _make_run(source, _FailingBackend(fail_load=True), notifier).run()

        assert outcome.state is RunState.ERRORED
        assert outcome.failed_state is RunState.LOADING
        assert isinstance(outcome.error, StoreLoadError)
        assert source.calls == []
        assert outcome.error_reported
        send.assert_awaited_once()
        assert "Monitor Error" in send.await_args.args[0]

    async def test_fetch_error_reported(self) -> None:
        backend = MemoryBackend()
        notifier, send = _make_notifier()
        source = _FakeSource(error=FetchError("rightmove", "connection refused"))

        outcome = await _make_run(source, backend, notifier).run()

        assert outcome.failed_state is RunState.FETCHING
        assert isinstance(outcome.error, FetchError)
        assert outcome.error_reported
        assert "connection refused" in send.await_args.args[0]
        assert backend.partitions() == []

    async def test_flush_failure_sends_dedicated_alert(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        notifier, send = _make_notifier()
        source = _FakeSource([_make_listing("1")])

        with caplog.at_level(logging.CRITICAL, logger="propalert.orchestrator.monitor"):
            outcome = await _make_run(source, _FailingBackend(fail_save=True), notifier).run()

        assert outcome.failed_state is RunState.COMMITTING
        assert isinstance(outcome.error, StoreFlushError)
        assert outcome.sent == 1
        assert send.await_count == 2
        report = send.await_args.args[0]
        assert "Tracking Save Failed" in report
        assert "1\\-1\\-park\\-row,\\-bristol" in report
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    async def test_unreported_error_still_errors(self) -> None:
        notifier, send = _make_notifier(side_effect=DeliveryRejectedError("Unauthorized", 401))
        source = _FakeSource(error=FetchError("rightmove", "down"))

        outcome = await _make_run(source, MemoryBackend(), notifier).run()

        assert outcome.state is RunState.ERRORED
        assert not outcome.error_reported
        assert send.await_count == 1

    async def test_unexpected_exception_is_contained(self) -> None:
        notifier, _ = _make_notifier()
        source = _FakeSource(error=RuntimeError("bug"))
        outcome = await _make_run(source, MemoryBackend(), notifier).run()
        assert outcome.failed_state is RunState.FETCHING
        assert isinstance(outcome.error, RuntimeError)

    async def test_timeout(self) -> None:
        notifier, send = _make_notifier()
        source = _FakeSource([_make_listing("1")], delay_s=5.0)

        outcome = await _make_run(source, MemoryBackend(), notifier, timeout_s=0.05).run()

        assert outcome.state is RunState.ERRORED
        assert outcome.failed_state is RunState.FETCHING
        assert isinstance(outcome.error, RunTimeoutError)
        assert outcome.error_reported
        assert outcome.duration_s < 5.0

    def test_negative_timeout_rejected(self) -> None:
        notifier, _ = _make_notifier()
        with pytest.raises(ValueError):
            _make_run(_FakeSource(), MemoryBackend(), notifier, timeout_s=-1)


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class TestRunLogFields:
    """Search key and run id are bound during the run and reset afterwards."""

    async def test_fields_bound_and_reset(self) -> None:
        notifier, _ = _make_notifier()
        source = _FakeSource([])
        outcome = await _make_run(source, MemoryBackend(), notifier).run()

        (fields,) = source.log_fields
        assert fields.search_key == "bristol-flats"
        assert len(fields.run_id) == 8
        assert outcome.run_id == fields.run_id
        assert RUN_LOG_CTX.get() == RunLogFields()

    async def test_concurrent_runs_keep_their_own_fields(self) -> None:
        notifier, _ = _make_notifier()
        source = _FakeSource([], delay_s=0.01)
        runs = [
            _make_run(source, MemoryBackend(), notifier, config=_make_config(k, k)).run()
            for k in ("a", "b")
        ]
        outcomes = await asyncio.gather(*runs)
        assert sorted(f.search_key for f in source.log_fields) == ["a", "b"]
        assert outcomes[0].run_id != outcomes[1].run_id
