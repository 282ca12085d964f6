"""Smoke tests: verify the test harness itself is wired up correctly.

These tests assert nothing about business logic.  Their sole purpose is to
confirm:

1. pytest discovers and runs tests in this suite.
2. pytest-asyncio's ``asyncio_mode = "auto"`` setting works (async tests
   run without any decorator).
3. Every propalert subpackage imports without errors.
4. ``configure_logging()`` executes without raising in both formats.

If any of these fail it means the project foundation is broken and no
subsequent tests can be trusted.
"""

from __future__ import annotations

import asyncio
import importlib
import logging

import pytest

from propalert.core import (
    ConfigError,
    DeliveryError,
    ListingSourceError,
    MonitorError,
    PropalertError,
    StoreError,
    configure_logging,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Import & startup smoke
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "module",
    [
        "propalert",
        "propalert.__main__",
        "propalert.core",
        "propalert.providers",
        "propalert.providers.api",
        "propalert.ranking",
        "propalert.storage",
        "propalert.notifiers",
        "propalert.orchestrator",
    ],
)
def test_package_imports(module: str) -> None:
    importlib.import_module(module)


def test_top_level_exports() -> None:
    from propalert.orchestrator import MonitorRun, RunOutcome, RunState, run_searches

    assert callable(run_searches)
    assert MonitorRun is not None and RunOutcome is not None
    assert RunState.DONE == "DONE"


def test_configure_logging_json() -> None:
    """``configure_logging`` runs without raising in JSON mode."""
    configure_logging(level="DEBUG", fmt="json", force=True)
    # Restore text mode so subsequent test output remains readable.
    configure_logging(level="DEBUG", fmt="text", force=True)


def test_configure_logging_invalid_level() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_LEVEL"):
        configure_logging(level="VERBOSE", force=True)


def test_configure_logging_invalid_format() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_FORMAT"):
        configure_logging(fmt="xml", force=True)


def test_exception_layers_share_base() -> None:
    for exc_class in (ConfigError, ListingSourceError, StoreError, DeliveryError, MonitorError):
        assert issubclass(exc_class, PropalertError), exc_class.__name__


# ---------------------------------------------------------------------------
# Async harness
# ---------------------------------------------------------------------------


async def test_async_test_runs() -> None:
    """Simplest possible async test; confirms pytest-asyncio is operational."""
    await asyncio.sleep(0)


async def test_async_exception_is_catchable() -> None:
    async def _failing_coro() -> None:
        raise DeliveryError("simulated failure", retryable=True)

    with pytest.raises(DeliveryError, match="simulated failure"):
        await _failing_coro()
