"""Runtime context for a single Propalert invocation.

Encapsulates the user-selected operating mode that alters pipeline behaviour
without changing any configuration values.  One :class:`RunContext` is
created in :mod:`propalert.__main__` and threaded through the runner,
every :class:`~propalert.orchestrator.monitor.MonitorRun` and the
:class:`~propalert.notifiers.notifier.Notifier`.

Current flags
-------------
dry_run
    Run the full pipeline including fetching, ranking and formatting, but
    **log the alert text** instead of POSTing it to Telegram.  Because no
    alert is delivered, tracking state is **not** committed either: a listing
    is only ever recorded as sent when a message containing it was really
    delivered.  Repeated dry runs therefore keep showing the same listings.

Typical usage::

    from propalert.core.run_context import RunContext

    ctx = RunContext(dry_run=args.dry_run)

    if not ctx.should_notify:
        logger.info("[dry-run] Would send:\\n%s", text)
        return
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

__all__ = ["RunContext"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Immutable container for per-invocation operating-mode flags.

    Attributes:
        dry_run: When ``True`` alerts are logged, not sent, and tracking
            state is left untouched.
    """

    dry_run: bool = field(default=False)

    @property
    def should_notify(self) -> bool:
        """``True`` when alerts must really be delivered."""
        return not self.dry_run

    @property
    def should_commit(self) -> bool:
        """``True`` when delivered listings must be written to tracking state.

        Tied to :attr:`should_notify`: nothing is tracked unless it was sent.
        :class:`~propalert.orchestrator.monitor.MonitorRun` checks it before
        committing a delivered batch.
        """
        return self.should_notify

    @property
    def mode_label(self) -> str:
        """``"dry-run"`` or ``"live"``, for log lines."""
        return "dry-run" if self.dry_run else "live"

    def __str__(self) -> str:
        return f"RunContext(mode={self.mode_label})"
