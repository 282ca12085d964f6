"""Propalert process entry-point.

Usage:
    python -m propalert [SEARCH_KEY ...] [--all] [--list] [--dry-run]
                        [--searches-file PATH] [--log-level LEVEL]
                        [--log-format FORMAT]

Each invocation runs every selected search once and exits; schedule it with
cron (or a CI timer) for continuous monitoring.  The exit status is ``1`` if
any run ended in error or the configuration is invalid, ``0`` otherwise.

The full orchestration logic lives in ``propalert.orchestrator``.  This module
is intentionally thin: it loads settings, calls ``configure_logging()`` so
every subsequent log record is formatted, then hands off to the runner.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from propalert.core import configure_logging
from propalert.core.exceptions import ConfigError, PropalertError
from propalert.core.models import SearchConfiguration
from propalert.core.run_context import RunContext
from propalert.core.searches import load_searches
from propalert.core.settings import Settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="propalert",
        description="Rightmove listing monitor with Telegram alerts.",
    )
    parser.add_argument(
        "search_keys",
        nargs="*",
        metavar="SEARCH_KEY",
        help="Key(s) of the searches to run, as named in the searches file.",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Run every configured search.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the configured searches and exit.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log alert payloads without sending them or saving tracking state.",
    )
    parser.add_argument(
        "--searches-file",
        default=None,
        metavar="PATH",
        help="Override SEARCHES_FILE env var (default: searches.json).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    return parser


def _select(
    searches: dict[str, SearchConfiguration],
    keys: Sequence[str],
    run_all: bool,
) -> list[SearchConfiguration]:
    """Resolve the CLI selection against the configured searches.

    Raises:
        ConfigError: No selection, or an unknown key.
    """
    available = ", ".join(sorted(searches)) or "(none)"
    if run_all:
        return list(searches.values())
    if not keys:
        raise ConfigError(
            f"No search selected. Pass SEARCH_KEY(s) or --all. Available searches: {available}"
        )
    unknown = [key for key in keys if key not in searches]
    if unknown:
        raise ConfigError(
            f"Unknown search key(s): {', '.join(unknown)}. Available searches: {available}"
        )
    # Preserve CLI order, drop repeats.
    return [searches[key] for key in dict.fromkeys(keys)]


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"propalert: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    try:
        configure_logging(
            level=args.log_level or settings.log_level,
            fmt=args.log_format or settings.log_format,
        )
    except ValueError as exc:
        print(f"propalert: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    searches_path = args.searches_file or settings.searches_file_resolved
    try:
        searches = load_searches(searches_path)
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    if args.list:
        for key, config in searches.items():
            print(f"{key}\t{config.name}")  # noqa: T201
        return

    ctx = RunContext(dry_run=args.dry_run)
    logger.info("Propalert starting up (%s)", ctx)

    # Lazy import keeps startup fast when module is imported without running.
    from propalert.orchestrator.runner import run_searches  # noqa: PLC0415

    try:
        configs = _select(searches, args.search_keys, args.all)
        outcomes = asyncio.run(run_searches(configs, ctx, settings))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except PropalertError as exc:
        logger.critical("Aborted: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(1)

    if any(not outcome.ok for outcome in outcomes):
        sys.exit(1)


if __name__ == "__main__":
    main()
