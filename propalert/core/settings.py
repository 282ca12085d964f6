"""Propalert application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.  The field name is the
**lowercase** version of the env-var name (e.g. ``TELEGRAM_BOT_TOKEN`` →
``telegram_bot_token``).

Saved searches are *not* settings; they live in the JSON file named by
``SEARCHES_FILE`` and are loaded by :mod:`propalert.core.searches`.

Typical usage::

    from propalert.core.settings import Settings

    settings = Settings()                 # loads from env + .env
    print(settings.telegram_configured)   # True / False
    print(settings.tracking_dir_resolved)
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings", "TRACKING_BACKENDS"]

logger = logging.getLogger(__name__)

#: Accepted values for ``TRACKING_BACKEND``.
TRACKING_BACKENDS: frozenset[str] = frozenset({"json", "sqlite"})


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    Telegram credentials may be left empty for dry runs;
    :attr:`telegram_configured` then returns ``False`` and the runner refuses
    to start in live mode.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Telegram
    # ------------------------------------------------------------------
    telegram_bot_token: str = Field(
        default="",
        description="Bot token from @BotFather (required for live alerts).",
    )
    telegram_chat_id: str = Field(
        default="",
        description="Chat ID alerts are delivered to.",
    )
    telegram_timeout_s: float = Field(
        default=10.0,
        gt=0.0,
        description="Per-request timeout for the Telegram API.",
    )
    delivery_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per alert; only retryable failures are retried.",
    )

    # ------------------------------------------------------------------
    # Searches and tracking
    # ------------------------------------------------------------------
    searches_file: str = Field(
        default="searches.json",
        description="Path to the saved-searches JSON file.",
    )
    tracking_backend: str = Field(
        default="json",
        description="Tracking state backend: 'json' (one file per search) or 'sqlite'.",
    )
    tracking_dir: str = Field(
        default="data",
        description="Directory holding the per-search JSON tracking files.",
    )
    database_path: str = Field(
        default="data/propalert.db",
        description="SQLite file used when TRACKING_BACKEND=sqlite.",
    )
    history_cap: int = Field(
        default=1000,
        ge=1,
        description="Maximum tracked listings kept per search.",
    )
    batch_cap: int = Field(
        default=3,
        ge=1,
        description="Maximum listings included in one alert.",
    )

    # ------------------------------------------------------------------
    # Listing source
    # ------------------------------------------------------------------
    source_base_url: str = Field(
        default="https://www.rightmove.co.uk",
        description="Base URL of the listing source.",
    )
    source_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per source request (transient failures only).",
    )
    fetch_delay_s: float = Field(
        default=1.0,
        ge=0.0,
        description="Minimum spacing between consecutive source requests.",
    )
    run_timeout_s: float = Field(
        default=0.0,
        ge=0.0,
        description="Wall-clock budget per monitoring run (0 = unlimited).",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("tracking_backend")
    @classmethod
    def _validate_tracking_backend(cls, v: str) -> str:
        v_lower = v.strip().lower()
        if v_lower not in TRACKING_BACKENDS:
            raise ValueError(
                f"tracking_backend must be one of {sorted(TRACKING_BACKENDS)}, got {v!r}"
            )
        return v_lower

    @field_validator("source_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    @model_validator(mode="after")
    def _history_holds_one_batch(self) -> Settings:
        # Pruning right after a commit must never evict what was just sent.
        if self.history_cap < self.batch_cap:
            raise ValueError(
                f"history_cap ({self.history_cap}) must be >= batch_cap ({self.batch_cap})"
            )
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def telegram_configured(self) -> bool:
        """``True`` if both Telegram credentials are set."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def searches_file_resolved(self) -> Path:
        return Path(self.searches_file).resolve()

    @property
    def tracking_dir_resolved(self) -> Path:
        return Path(self.tracking_dir).resolve()

    @property
    def database_path_resolved(self) -> Path:
        return Path(self.database_path).resolve()
