"""One monitoring run for one search: load → fetch → filter → rank → batch →
dispatch → commit.

:class:`MonitorRun` is an explicit state machine.  Each stage is entered
through :meth:`MonitorRun._enter`, so the state a run failed in is always
known and reported in its :class:`RunOutcome`::

    LOADING → FETCHING → FILTERING → RANKING → BATCHING → DISPATCHING
            → COMMITTING → DONE
    (any state) → ERRORED

Delivery contract
-----------------
Listings are recorded in the tracking store only after Telegram confirmed
the alert.  A failed delivery leaves the store untouched, so the same
listings are offered again next run.  A failed flush after a confirmed
delivery is the one case where an alert may repeat; it is logged at
``CRITICAL`` and reported with its own alert template.

Failure reporting
-----------------
Every run that ends ``ERRORED`` makes exactly one best-effort error
notification through the :class:`~propalert.notifiers.notifier.Notifier`.
A failure to report is logged, never raised.

Typical usage::

    run = MonitorRun(config, source, backend, notifier, history_cap=1000)
    outcome = await run.run()
    if not outcome.ok:
        ...
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from propalert.core import events
from propalert.core.exceptions import (
    ListingSourceError,
    PropalertError,
    RunTimeoutError,
    StoreFlushError,
    StoreLoadError,
)
from propalert.core.logging_config import bind_run
from propalert.core.models import SearchConfiguration
from propalert.notifiers.batcher import NotificationBatcher
from propalert.notifiers.notifier import Notifier
from propalert.providers.base import BaseListingSource
from propalert.ranking.scorer import DEFAULT_WEIGHTS, ScoringWeights, rank
from propalert.storage.backends import TrackingBackend
from propalert.storage.tracking import DEFAULT_MAX_ENTRIES, TrackingStore

__all__ = ["MonitorRun", "RunOutcome", "RunState"]

logger = logging.getLogger(__name__)


class RunState(StrEnum):
    """Stages of a :class:`MonitorRun`."""

    LOADING = "LOADING"
    FETCHING = "FETCHING"
    FILTERING = "FILTERING"
    RANKING = "RANKING"
    BATCHING = "BATCHING"
    DISPATCHING = "DISPATCHING"
    COMMITTING = "COMMITTING"
    DONE = "DONE"
    ERRORED = "ERRORED"


@dataclass
class RunOutcome:
    """Result of one :class:`MonitorRun`.

    Attributes:
        search_key: Key of the search configuration (tracking partition).
        run_id: Short id tagging this run's log lines.
        state: Final state, ``DONE`` or ``ERRORED``.
        failed_state: State the run was in when it failed; ``None`` if ok.
        error: The exception that ended the run; ``None`` if ok.
        fetched: Candidates returned by the source.
        new: Candidates not yet tracked.
        sent: Listings in the delivered alert (0 in dry-run mode).
        error_reported: ``True`` if the error alert was delivered.
        duration_s: Wall-clock run time in seconds.
    """

    search_key: str
    run_id: str = "-"
    state: RunState = RunState.LOADING
    failed_state: RunState | None = None
    error: BaseException | None = None
    fetched: int = 0
    new: int = 0
    sent: int = 0
    error_reported: bool = False
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state is RunState.DONE


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MonitorRun:
    """Drive one search through the monitoring pipeline.

    Args:
        config: Search to monitor; its ``key`` names the tracking partition.
        source: Listing source (shared between runs).
        backend: Tracking backend (shared between runs).
        notifier: Delivery front-end; owns dry-run handling and retries.
        batcher: Caps the alert size.  Defaults to 3 listings.
        history_cap: Maximum tracked listings kept for this search; at least
            the batch cap, so a commit never prunes what it just recorded.
        weights: Scoring constants.
        clock: Returns the current timezone-aware time.
        timeout_s: Wall-clock limit for the whole run; ``0`` disables it.
    """

    def __init__(
        self,
        config: SearchConfiguration,
        source: BaseListingSource,
        backend: TrackingBackend,
        notifier: Notifier,
        *,
        batcher: NotificationBatcher | None = None,
        history_cap: int = DEFAULT_MAX_ENTRIES,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        clock: Callable[[], datetime] = _utcnow,
        timeout_s: float = 0.0,
    ) -> None:
        if timeout_s < 0:
            raise ValueError(f"timeout_s must be ≥ 0, got {timeout_s!r}.")
        batcher = batcher or NotificationBatcher()
        if history_cap < batcher.cap:
            raise ValueError(
                f"history_cap ({history_cap}) must be ≥ the batch cap ({batcher.cap})."
            )
        self._config = config
        self._source = source
        self._backend = backend
        self._notifier = notifier
        self._batcher = batcher
        self._history_cap = history_cap
        self._weights = weights
        self._clock = clock
        self._timeout_s = timeout_s
        self._state = RunState.LOADING
        self._pending_keys: list[str] = []

    @property
    def config(self) -> SearchConfiguration:
        return self._config

    @property
    def state(self) -> RunState:
        return self._state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> RunOutcome:
        """Execute the run to completion.

        Never raises for pipeline failures: they end the run ``ERRORED``
        and are described by the returned :class:`RunOutcome`.
        """
        with bind_run(self._config.key) as fields:
            started = time.monotonic()
            outcome = RunOutcome(search_key=self._config.key, run_id=fields.run_id)
            logger.info(
                "Run started for %r (%s)",
                self._config.name,
                self._notifier.ctx.mode_label,
                extra={"event": events.RUN_START},
            )
            error = await self._run_guarded(outcome)
            if error is None:
                self._enter(RunState.DONE)
                outcome.state = RunState.DONE
            else:
                outcome.failed_state = self._state
                outcome.error = error
                self._enter(RunState.ERRORED)
                outcome.state = RunState.ERRORED
                outcome.error_reported = await self._report(error)
            outcome.duration_s = time.monotonic() - started
            self._log_outcome(outcome)
            return outcome

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_guarded(self, outcome: RunOutcome) -> BaseException | None:
        """Run the pipeline and return the exception that ended it, if any."""
        deadline = asyncio.timeout(self._timeout_s or None)
        try:
            async with deadline:
                await self._execute(outcome)
        except TimeoutError as exc:
            if not deadline.expired():
                logger.exception("Unexpected timeout in state %s", self._state)
                return exc
            logger.error(
                "Run for %r timed out after %.1f s in state %s",
                self._config.name,
                self._timeout_s,
                self._state,
                extra={"event": events.RUN_TIMEOUT},
            )
            return RunTimeoutError(self._config.key, self._timeout_s)
        except StoreLoadError as exc:
            logger.error(
                "Could not load tracking state: %s",
                exc,
                extra={"event": events.STORE_LOAD_ERROR},
            )
            return exc
        except ListingSourceError as exc:
            logger.error(
                "Fetch failed for %r: %s",
                self._config.name,
                exc,
                extra={"event": events.SOURCE_FETCH_ERROR},
            )
            return exc
        except StoreFlushError as exc:
            logger.critical(
                "Alert delivered but tracking state NOT saved for %r; "
                "%d listing(s) may be sent again: %s",
                self._config.name,
                len(self._pending_keys),
                exc,
                extra={"event": events.STORE_FLUSH_ERROR},
            )
            return exc
        except PropalertError as exc:
            # DeliveryError is already logged by the notifier.
            return exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error in state %s", self._state)
            return exc
        return None

    async def _execute(self, outcome: RunOutcome) -> None:
        self._enter(RunState.LOADING)
        store = await TrackingStore.open(
            self._backend, self._config.key, max_entries=self._history_cap
        )

        self._enter(RunState.FETCHING)
        candidates = await self._source.fetch(self._config)
        outcome.fetched = len(candidates)

        self._enter(RunState.FILTERING)
        unseen = store.filter_unseen(candidates)
        outcome.new = len(unseen)

        self._enter(RunState.RANKING)
        now = self._clock()
        ranked = rank(unseen, now, self._weights)

        self._enter(RunState.BATCHING)
        batch = self._batcher.build(ranked, len(unseen), self._config.name)
        if batch.is_empty:
            logger.info("No new listings for %r", self._config.name)
            return
        logger.info(
            "%d new listing(s) for %r, alerting on %d",
            batch.total_new,
            self._config.name,
            len(batch.entries),
            extra={"event": events.LISTINGS_NEW},
        )

        self._enter(RunState.DISPATCHING)
        delivered = await self._notifier.send_batch(batch)
        if not delivered or not self._notifier.ctx.should_commit:
            return
        outcome.sent = len(batch.entries)
        self._pending_keys = [listing.key for listing in batch.listings]

        self._enter(RunState.COMMITTING)
        store.record_sent(batch.listings, seen_at=now)
        store.prune()
        await store.flush()
        self._pending_keys = []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter(self, state: RunState) -> None:
        self._state = state
        logger.debug("→ %s", state, extra={"event": events.RUN_STATE})

    async def _report(self, error: BaseException) -> bool:
        if isinstance(error, StoreFlushError):
            return await self._notifier.report_flush_failure(
                self._config.name, self._pending_keys, error
            )
        return await self._notifier.report_failure(self._config.name, error)

    def _log_outcome(self, outcome: RunOutcome) -> None:
        if outcome.ok:
            logger.info(
                "Run done for %r: fetched=%d new=%d sent=%d (%.2f s)",
                self._config.name,
                outcome.fetched,
                outcome.new,
                outcome.sent,
                outcome.duration_s,
                extra={"event": events.RUN_DONE},
            )
        else:
            logger.error(
                "Run errored for %r in state %s: %s (reported=%s, %.2f s)",
                self._config.name,
                outcome.failed_state,
                outcome.error,
                outcome.error_reported,
                outcome.duration_s,
                extra={"event": events.RUN_ERRORED},
            )
