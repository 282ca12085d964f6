"""Per-search monitoring runs and the multi-search runner.

Public API
----------
* :class:`~propalert.orchestrator.monitor.MonitorRun`: one search through
  load → fetch → filter → rank → batch → dispatch → commit.
* :class:`~propalert.orchestrator.monitor.RunOutcome` /
  :class:`~propalert.orchestrator.monitor.RunState`: what a run did and
  where it stopped.
* :func:`~propalert.orchestrator.runner.run_searches`: wire every
  component and run many searches concurrently.
"""

from propalert.orchestrator.monitor import MonitorRun, RunOutcome, RunState
from propalert.orchestrator.runner import run_searches

__all__ = [
    "MonitorRun",
    "RunOutcome",
    "RunState",
    "run_searches",
]
