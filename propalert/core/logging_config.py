"""Propalert logging configuration.

Call ``configure_logging()`` once at process startup (``__main__`` does so,
with the level and format from :class:`~propalert.core.settings.Settings`).
Every other module defines its own logger at module scope:

    import logging
    logger = logging.getLogger(__name__)

Run fields
----------
Each :class:`~propalert.orchestrator.monitor.MonitorRun` executes inside
:func:`bind_run`, which stores the search key and a fresh short run id in a
``ContextVar``.  :class:`RunFieldsFilter` copies both onto every record, so
interleaved lines from concurrent runs stay attributable:

    text  2026-10-19 07:00:01 INFO     [bristol-flats/a3f2b1c0] propalert...: ...
    json  {"search_key": "bristol-flats", "run_id": "a3f2b1c0", ...}

Records logged outside a run carry ``"-"`` for both fields.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "configure_logging",
    "bind_run",
    "JsonFormatter",
    "RUN_LOG_CTX",
    "RunFieldsFilter",
    "RunLogFields",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunLogFields:
    """Per-run fields attached to log records."""

    search_key: str = "-"
    run_id: str = "-"


#: Fields of the run executing in the current task.  ``asyncio.gather``
#: gives each run its own context copy, so concurrent runs never mix.
RUN_LOG_CTX: ContextVar[RunLogFields] = ContextVar("run_log_fields", default=RunLogFields())


@contextmanager
def bind_run(search_key: str) -> Iterator[RunLogFields]:
    """Bind *search_key* and a new 8-hex-char run id for the enclosed block."""
    fields = RunLogFields(search_key=search_key, run_id=uuid.uuid4().hex[:8])
    token = RUN_LOG_CTX.set(fields)
    try:
        yield fields
    finally:
        RUN_LOG_CTX.reset(token)


class RunFieldsFilter(logging.Filter):
    """Copy the current :class:`RunLogFields` onto each record.

    Installed on the handler so it also sees records propagated from
    child loggers.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        fields = RUN_LOG_CTX.get()
        record.search_key = fields.search_key
        record.run_id = fields.run_id
        return True


_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_FORMATS = ("text", "json")

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(search_key)s/%(run_id)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO (httpx logs every request).
_QUIET_BELOW_DEBUG = ("httpx", "httpcore", "asyncio", "aiosqlite")


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    *,
    force: bool = False,
) -> None:
    """Configure the root logger for the entire process.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (any case).
        fmt: ``"text"`` or ``"json"``.
        force: Replace existing root handlers.  Without it an already
            configured root logger only has its level updated.  Tests pass
            ``True``.

    Raises:
        ValueError: If *level* or *fmt* is not recognised.
    """
    level = level.upper()
    fmt = fmt.lower()
    if level not in _LEVELS:
        raise ValueError(f"Unknown LOG_LEVEL {level!r}. Must be one of: {', '.join(_LEVELS)}")
    if fmt not in _FORMATS:
        raise ValueError(f"Unknown LOG_FORMAT {fmt!r}. Must be one of: {', '.join(_FORMATS)}")

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunFieldsFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT))
    root.handlers[:] = [handler]

    quiet_level = logging.NOTSET if level == "DEBUG" else logging.WARNING
    for name in _QUIET_BELOW_DEBUG:
        logging.getLogger(name).setLevel(quiet_level)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came from ``extra=``.
_BUILTIN_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "search_key", "run_id", "event"}


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per record.

    Run fields and the structured ``event`` name are top-level keys;
    any other ``extra=`` values go under ``"extra"``::

        {"ts": "2026-10-19T07:00:01.123Z", "level": "INFO",
         "logger": "propalert.orchestrator.monitor",
         "search_key": "bristol-flats", "run_id": "a3f2b1c0",
         "event": "RUN_DONE", "message": "Run done for ...", "extra": {}}

    ``event`` is ``null`` for records logged without one.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "search_key": getattr(record, "search_key", "-"),
            "run_id": getattr(record, "run_id", "-"),
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
            "extra": {k: v for k, v in vars(record).items() if k not in _BUILTIN_ATTRS},
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)
