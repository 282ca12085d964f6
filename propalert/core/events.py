"""Structured log event names for the monitoring pipeline.

Key transitions emit a log record with an ``event`` field, passed via
``extra={"event": events.X}``.  In ``LOG_FORMAT=json`` mode it is a top-level
``event`` key beside ``search_key`` and ``run_id``; in text mode the message
is self-describing and the event name is not printed.

Usage example::

    import logging
    from propalert.core import events

    logger = logging.getLogger(__name__)

    logger.info("Run started", extra={"event": events.RUN_START})
"""

from __future__ import annotations

__all__ = [
    # Run lifecycle
    "RUN_START",
    "RUN_STATE",
    "RUN_DONE",
    "RUN_ERRORED",
    "RUN_TIMEOUT",
    # Source
    "SOURCE_FETCH_OK",
    "SOURCE_FETCH_ERROR",
    "SOURCE_ENTRY_SKIPPED",
    # Tracking store
    "STORE_LOADED",
    "STORE_LOAD_ERROR",
    "STORE_PRUNED",
    "STORE_FLUSHED",
    "STORE_FLUSH_ERROR",
    # Listings and delivery
    "LISTINGS_NEW",
    "BATCH_DISPATCHED",
    "BATCH_DRY_RUN",
    "DELIVERY_RETRY",
    "DELIVERY_ERROR",
    "ERROR_REPORTED",
    "ERROR_REPORT_FAILED",
]

# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------

#: A :class:`~propalert.orchestrator.monitor.MonitorRun` started.
RUN_START: str = "RUN_START"

#: The run entered a new state (DEBUG level).
RUN_STATE: str = "RUN_STATE"

#: The run reached ``DONE``.
RUN_DONE: str = "RUN_DONE"

#: The run reached ``ERRORED``.
RUN_ERRORED: str = "RUN_ERRORED"

#: The run exceeded ``RUN_TIMEOUT_S`` and was cancelled.
RUN_TIMEOUT: str = "RUN_TIMEOUT"

# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------

#: The listing source returned a parsed result page.
SOURCE_FETCH_OK: str = "SOURCE_FETCH_OK"

#: The listing source raised a fetch, status or parse error.
SOURCE_FETCH_ERROR: str = "SOURCE_FETCH_ERROR"

#: A single malformed entry was dropped from an otherwise valid page.
SOURCE_ENTRY_SKIPPED: str = "SOURCE_ENTRY_SKIPPED"

# ---------------------------------------------------------------------------
# Tracking store
# ---------------------------------------------------------------------------

#: A partition was loaded from its backend.
STORE_LOADED: str = "STORE_LOADED"

#: A partition could not be loaded; the run aborts before fetching.
STORE_LOAD_ERROR: str = "STORE_LOAD_ERROR"

#: Oldest entries were evicted to respect the history cap.
STORE_PRUNED: str = "STORE_PRUNED"

#: A partition was written durably.
STORE_FLUSHED: str = "STORE_FLUSHED"

#: A partition could not be written after a successful dispatch.
STORE_FLUSH_ERROR: str = "STORE_FLUSH_ERROR"

# ---------------------------------------------------------------------------
# Listings and delivery
# ---------------------------------------------------------------------------

#: Unseen listings were found for a search.
LISTINGS_NEW: str = "LISTINGS_NEW"

#: A batch alert was confirmed delivered.
BATCH_DISPATCHED: str = "BATCH_DISPATCHED"

#: A batch alert was logged instead of sent (dry-run).
BATCH_DRY_RUN: str = "BATCH_DRY_RUN"

#: A retryable delivery failure is being retried.
DELIVERY_RETRY: str = "DELIVERY_RETRY"

#: Delivery failed; nothing is committed.
DELIVERY_ERROR: str = "DELIVERY_ERROR"

#: An error alert was delivered for a failed run.
ERROR_REPORTED: str = "ERROR_REPORTED"

#: The error alert itself could not be delivered.
ERROR_REPORT_FAILED: str = "ERROR_REPORT_FAILED"
