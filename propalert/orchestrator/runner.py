"""Orchestrator entry-point: assemble all components and run every search once.

This module provides :func:`run_searches`, the top-level async function
invoked by :mod:`propalert.__main__`.

Component wiring
----------------
Each call to :func:`run_searches`:

1. Loads :class:`~propalert.core.settings.Settings` (or uses the supplied
   instance).
2. Builds the tracking backend selected by ``TRACKING_BACKEND``: one JSON
   file per search under ``TRACKING_DIR``, or one SQLite database at
   ``DATABASE_PATH`` (the connection is opened here and shared).
3. Builds one :class:`~propalert.providers.api.rightmove.RightmoveSource`
   with a shared :class:`~propalert.providers.throttle.FetchThrottle`, one
   :class:`~propalert.notifiers.telegram.TelegramDispatcher` and one
   :class:`~propalert.notifiers.notifier.Notifier`, all entered through a
   single :class:`contextlib.AsyncExitStack`.
4. Runs one :class:`~propalert.orchestrator.monitor.MonitorRun` per search
   concurrently with ``asyncio.gather``.  Runs own disjoint tracking
   partitions, so they never contend for state.
   If the tracking backend cannot be opened (a corrupt SQLite file), no
   run starts: every search ends ``ERRORED`` in ``LOADING`` and is reported.
5. Tears down every resource cleanly on exit, including on exceptions.

Any of the source, backend or dispatcher may be injected (tests); injected
objects are used as-is and never closed here.

Telegram / dry-run behaviour
-----------------------------
In **live mode** Telegram credentials (``TELEGRAM_BOT_TOKEN``,
``TELEGRAM_CHAT_ID``) must be configured, or :func:`run_searches` raises
:exc:`~propalert.core.exceptions.ConfigError` before any network I/O.

In **dry-run** mode credentials are optional.  When absent, the dispatcher
is still constructed with harmless placeholder credentials; the Notifier
never calls it in dry-run mode, so no HTTP request is made.

Typical usage::

    import asyncio
    from propalert.core.run_context import RunContext
    from propalert.core.searches import load_searches
    from propalert.orchestrator.runner import run_searches

    configs = load_searches("searches.json")
    outcomes = asyncio.run(run_searches(list(configs.values()), RunContext(dry_run=True)))
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from contextlib import AsyncExitStack

from propalert.core import events
from propalert.core.exceptions import ConfigError, StoreLoadError
from propalert.core.models import SearchConfiguration
from propalert.core.run_context import RunContext
from propalert.core.settings import Settings
from propalert.notifiers.batcher import NotificationBatcher
from propalert.notifiers.notifier import Notifier
from propalert.notifiers.telegram import TelegramDispatcher
from propalert.orchestrator.monitor import MonitorRun, RunOutcome, RunState
from propalert.providers.api.rightmove import RightmoveSource
from propalert.providers.base import BaseListingSource
from propalert.providers.throttle import FetchThrottle
from propalert.storage.backends import JsonFileBackend, SqliteBackend, TrackingBackend
from propalert.storage.database import open_db

__all__ = ["run_searches"]

logger = logging.getLogger(__name__)

# Placeholder credentials used to satisfy TelegramDispatcher's constructor
# when dry-run mode guarantees no real message will be sent.
_PLACEHOLDER_TOKEN: str = "placeholder:dry_run"
_PLACEHOLDER_CHAT_ID: str = "0"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


async def _build_backend(settings: Settings, stack: AsyncExitStack) -> TrackingBackend:
    """Create the configured tracking backend, registering cleanup on *stack*."""
    if settings.tracking_backend == "sqlite":
        conn = await open_db(settings.database_path_resolved)
        stack.push_async_callback(conn.close)
        logger.debug("Tracking backend: sqlite at %s", settings.database_path_resolved)
        return SqliteBackend(conn)

    logger.debug("Tracking backend: json files in %s", settings.tracking_dir_resolved)
    return JsonFileBackend(settings.tracking_dir_resolved)


async def _fail_all(
    configs: Sequence[SearchConfiguration],
    notifier: Notifier,
    error: StoreLoadError,
) -> list[RunOutcome]:
    """End every run ERRORED in LOADING when the backend cannot be opened."""
    logger.error(
        "Could not open tracking backend: %s",
        error,
        extra={"event": events.STORE_LOAD_ERROR},
    )
    outcomes = []
    for config in configs:
        reported = await notifier.report_failure(config.name, error)
        outcomes.append(
            RunOutcome(
                search_key=config.key,
                state=RunState.ERRORED,
                failed_state=RunState.LOADING,
                error=error,
                error_reported=reported,
            )
        )
    return outcomes


def _telegram_credentials(ctx: RunContext, settings: Settings) -> tuple[str, str]:
    if settings.telegram_configured:
        return settings.telegram_bot_token, settings.telegram_chat_id
    if ctx.should_notify:
        raise ConfigError(
            "Live mode requires Telegram credentials. "
            "Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID in .env (or env vars)."
        )
    logger.debug(
        "Telegram not configured, using placeholder credentials (safe in %s mode).",
        ctx.mode_label,
    )
    return _PLACEHOLDER_TOKEN, _PLACEHOLDER_CHAT_ID


# ---------------------------------------------------------------------------
# Public entry-point
# ---------------------------------------------------------------------------


async def run_searches(
    configs: Sequence[SearchConfiguration],
    ctx: RunContext,
    settings: Settings | None = None,
    *,
    source: BaseListingSource | None = None,
    backend: TrackingBackend | None = None,
    dispatcher: TelegramDispatcher | None = None,
) -> list[RunOutcome]:
    """Run every search in *configs* once, concurrently.

    Args:
        configs: Searches to monitor.  Keys must be unique.
        ctx: Runtime operating-mode flags (dry-run / live).
        settings: Pre-loaded settings; loaded from the environment when
            ``None``.
        source: Listing source to use instead of a new Rightmove source.
        backend: Tracking backend to use instead of the configured one.
        dispatcher: Telegram dispatcher to use instead of a new one.

    Returns:
        One :class:`~propalert.orchestrator.monitor.RunOutcome` per search,
        in the order of *configs*.

    Raises:
        ConfigError: Live mode without Telegram credentials, or duplicate
            search keys.

    A tracking backend that cannot be opened is not raised; it ends every
    run ``ERRORED``.
    """
    if settings is None:
        settings = Settings()

    keys = [config.key for config in configs]
    duplicates = sorted({key for key in keys if keys.count(key) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate search key(s): {', '.join(duplicates)}")

    if dispatcher is None:
        tg_token, tg_chat_id = _telegram_credentials(ctx, settings)
    t0 = time.monotonic()

    logger.info(
        "Starting %d search run(s), mode=%s backend=%s",
        len(configs),
        ctx.mode_label,
        settings.tracking_backend if backend is None else type(backend).__name__,
    )

    if not configs:
        logger.warning("No searches to run.")
        return []

    async with AsyncExitStack() as stack:
        if dispatcher is None:
            dispatcher = await stack.enter_async_context(
                TelegramDispatcher(
                    token=tg_token,
                    chat_id=tg_chat_id,
                    timeout_s=settings.telegram_timeout_s,
                )
            )

        if source is None:
            source = await stack.enter_async_context(
                RightmoveSource(
                    base_url=settings.source_base_url,
                    throttle=FetchThrottle(settings.fetch_delay_s),
                    max_attempts=settings.source_max_attempts,
                )
            )

        notifier = Notifier(dispatcher, ctx, max_attempts=settings.delivery_max_attempts)
        batcher = NotificationBatcher(cap=settings.batch_cap)

        if backend is None:
            try:
                backend = await _build_backend(settings, stack)
            except StoreLoadError as exc:
                return await _fail_all(configs, notifier, exc)

        runs = [
            MonitorRun(
                config,
                source,
                backend,
                notifier,
                batcher=batcher,
                history_cap=settings.history_cap,
                timeout_s=settings.run_timeout_s,
            )
            for config in configs
        ]
        outcomes = list(await asyncio.gather(*(run.run() for run in runs)))

    errored = [o for o in outcomes if not o.ok]
    logger.info(
        "Finished %d run(s) in %.2f s: %d ok, %d errored, %d listing(s) sent",
        len(outcomes),
        time.monotonic() - t0,
        len(outcomes) - len(errored),
        len(errored),
        sum(o.sent for o in outcomes),
    )
    return outcomes
