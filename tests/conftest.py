"""Shared pytest fixtures and configuration for the propalert test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os

import pytest
from pydantic_settings import SettingsConfigDict

from propalert.core import configure_logging
from propalert.core.settings import Settings


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    ``force=True`` applies the configuration even when pytest's own
    ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every propalert setting from the environment for one test.

    Also disables pydantic-settings ``.env`` file loading so that values in
    a local ``.env`` file do not leak into Settings isolation tests.
    """
    setting_prefixes = (
        "TELEGRAM_",
        "DELIVERY_",
        "SEARCHES_",
        "TRACKING_",
        "DATABASE_",
        "HISTORY_",
        "BATCH_",
        "SOURCE_",
        "FETCH_",
        "RUN_",
        "LOG_",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in setting_prefixes):
            monkeypatch.delenv(key, raising=False)

    # pydantic-settings reads the .env file directly, not via os.environ.
    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
