"""Cycle scheduling, fan-out, buffering, and flush coordination.

Public API
----------
* :func:`~inferwatch.orchestrator.scheduler.run_continuous`: default runtime
  entry-point; ticks on a fixed interval until SIGINT/SIGTERM.
* :func:`~inferwatch.orchestrator.runner.run_once`: single cycle; used for
  ``--once`` mode and manual testing.
* :func:`~inferwatch.orchestrator.runner.open_orchestrator`: assembles the
  runtime around a :class:`CycleOrchestrator`.
* :class:`~inferwatch.orchestrator.cycle.CycleOrchestrator`: the no-overlap
  guard and the cycle body.
* :class:`~inferwatch.orchestrator.pipeline.FanOutRunner`: concurrent probes
  with per-item failure isolation.
* :class:`~inferwatch.orchestrator.flush.FlushCoordinator`: buffer upload
  with clear-only-on-success.
* :class:`~inferwatch.orchestrator.metrics.LifetimeStats` and
  :func:`~inferwatch.orchestrator.metrics.write_stats_file`: cumulative
  cross-cycle statistics.
"""

from inferwatch.orchestrator.cycle import CycleOrchestrator, CycleReport, CycleState
from inferwatch.orchestrator.flush import FlushCoordinator
from inferwatch.orchestrator.metrics import (
    LifetimeStats,
    ProviderLifetimeStats,
    write_stats_file,
)
from inferwatch.orchestrator.pipeline import FanOutRunner
from inferwatch.orchestrator.runner import open_orchestrator, run_once
from inferwatch.orchestrator.scheduler import run_continuous, run_schedule

__all__ = [
    # Cycle
    "CycleOrchestrator",
    "CycleReport",
    "CycleState",
    # Pipeline primitives
    "FanOutRunner",
    "FlushCoordinator",
    # Entry-points
    "open_orchestrator",
    "run_once",
    "run_continuous",
    "run_schedule",
    # Lifetime metrics
    "LifetimeStats",
    "ProviderLifetimeStats",
    "write_stats_file",
]
