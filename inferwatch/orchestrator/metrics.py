"""Cumulative cross-cycle statistics for Inferwatch.

Tracks lifetime totals across all cycles and provides two output paths:

1. **Log summary**: :meth:`LifetimeStats.format_summary` returns a
   human-readable string suitable for a single ``logger.info()`` call.
2. **JSON stats file**: :func:`write_stats_file` serialises
   :meth:`LifetimeStats.as_dict` to a file (default
   ``/tmp/inferwatch_stats.json``, overridable via ``INFERWATCH_STATS_PATH``)
   so operators can ``cat`` a snapshot of the running process.

The scheduler rewrites the stats file after every tick.  Write errors are
logged at WARNING level and never propagated.

Typical usage::

    from inferwatch.orchestrator.metrics import LifetimeStats, write_stats_file

    stats = LifetimeStats()

    report = await orchestrator.tick()
    stats.update(report, skipped_ticks=orchestrator.state.skipped_ticks)
    write_stats_file(stats)
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

from inferwatch.orchestrator.cycle import CycleReport

__all__ = [
    "STATS_PATH",
    "ProviderLifetimeStats",
    "LifetimeStats",
    "write_stats_file",
]

logger = logging.getLogger(__name__)

#: Destination for the JSON stats snapshot.  Override via the
#: ``INFERWATCH_STATS_PATH`` environment variable if ``/tmp`` is not writable.
STATS_PATH: str = os.environ.get("INFERWATCH_STATS_PATH", "/tmp/inferwatch_stats.json")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class ProviderLifetimeStats:
    """Accumulated probe counters for one provider.

    Attributes:
        provider: Provider name.
        calls: Outcomes recorded for this provider.
        failures: Outcomes carrying an error message.
        total_duration_ms: Sum of outcome durations, for the mean.
    """

    provider: str
    calls: int = 0
    failures: int = 0
    total_duration_ms: int = 0

    @property
    def mean_latency_ms(self) -> float:
        return self.total_duration_ms / self.calls if self.calls else 0.0


@dataclass
class LifetimeStats:
    """Cumulative statistics across all cycles of the process.

    Attributes:
        cycles_run: Accepted cycles that completed (including failed ones).
        failed_cycles: Cycles aborted by an error.
        skipped_ticks: Ticks rejected by the no-overlap guard.
        outcomes_buffered: Rows appended to the buffer.
        failed_outcomes: Outcomes carrying an error message.
        flushes_attempted: Cycles that reached the push interval.
        flushes_ok: Flushes that uploaded and cleared the buffer.
    """

    cycles_run: int = 0
    failed_cycles: int = 0
    skipped_ticks: int = 0
    outcomes_buffered: int = 0
    failed_outcomes: int = 0
    flushes_attempted: int = 0
    flushes_ok: int = 0

    _start_monotonic: float = field(default_factory=time.monotonic, repr=False)
    _started_at: datetime = field(
        default_factory=lambda: datetime.now(UTC),
        repr=False,
    )
    _providers: dict[str, ProviderLifetimeStats] = field(
        default_factory=dict,
        repr=False,
    )

    @property
    def uptime_s(self) -> float:
        """Seconds since this instance was created."""
        return time.monotonic() - self._start_monotonic

    @property
    def providers(self) -> dict[str, ProviderLifetimeStats]:
        """Per-provider lifetime stats keyed by provider name."""
        return self._providers

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update(self, report: CycleReport | None, *, skipped_ticks: int | None = None) -> None:
        """Fold one tick's result into the lifetime totals.

        Args:
            report: The cycle report, or ``None`` for a skipped tick.
            skipped_ticks: The orchestrator's running skip count.  When
                given it replaces :attr:`skipped_ticks`; otherwise a ``None``
                report counts as one skip.
        """
        if skipped_ticks is not None:
            self.skipped_ticks = skipped_ticks
        elif report is None:
            self.skipped_ticks += 1

        if report is None:
            return

        self.cycles_run += 1
        if report.failed:
            self.failed_cycles += 1
        self.outcomes_buffered += report.appended
        self.failed_outcomes += report.failed_outcomes
        if report.flush_attempted:
            self.flushes_attempted += 1
        if report.flushed:
            self.flushes_ok += 1

        for outcome in report.outcomes:
            p = self._providers.get(outcome.provider_name)
            if p is None:
                p = self._providers[outcome.provider_name] = ProviderLifetimeStats(
                    provider=outcome.provider_name
                )
            p.calls += 1
            if not outcome.succeeded:
                p.failures += 1
            p.total_duration_ms += outcome.duration_ms

    # ------------------------------------------------------------------
    # Serialisation / formatting
    # ------------------------------------------------------------------

    def format_summary(self) -> str:
        """Return a multi-line lifetime summary for logging.

        Example output::

            lifetime stats: uptime 3h00m12s | cycles=6 failed_cycles=0 skipped_ticks=1
              buffered=42 failed_outcomes=3 flushes=1/1
              together: calls=12 failures=0 mean_latency_ms=812
              nebius: calls=12 failures=3 mean_latency_ms=2310
        """
        uptime = self.uptime_s
        hours, rem = divmod(int(uptime), 3600)
        minutes, seconds = divmod(rem, 60)

        lines = [
            f"lifetime stats: uptime {hours}h{minutes:02d}m{seconds:02d}s | "
            f"cycles={self.cycles_run} failed_cycles={self.failed_cycles} "
            f"skipped_ticks={self.skipped_ticks}",
            f"  buffered={self.outcomes_buffered} failed_outcomes={self.failed_outcomes} "
            f"flushes={self.flushes_ok}/{self.flushes_attempted}",
        ]
        for p in sorted(self._providers.values(), key=lambda x: x.provider):
            lines.append(
                f"  {p.provider}: calls={p.calls} failures={p.failures} "
                f"mean_latency_ms={p.mean_latency_ms:.0f}"
            )
        return "\n".join(lines)

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of lifetime stats."""
        return {
            "started_at": self._started_at.isoformat(),
            "uptime_s": round(self.uptime_s, 1),
            "cycles_run": self.cycles_run,
            "failed_cycles": self.failed_cycles,
            "skipped_ticks": self.skipped_ticks,
            "outcomes_buffered": self.outcomes_buffered,
            "failed_outcomes": self.failed_outcomes,
            "flushes_attempted": self.flushes_attempted,
            "flushes_ok": self.flushes_ok,
            "providers": {
                name: {
                    "calls": p.calls,
                    "failures": p.failures,
                    "mean_latency_ms": round(p.mean_latency_ms, 1),
                }
                for name, p in sorted(self._providers.items())
            },
        }


# ---------------------------------------------------------------------------
# Stats file writer
# ---------------------------------------------------------------------------


def write_stats_file(
    stats: LifetimeStats,
    path: str = STATS_PATH,
) -> None:
    """Write a JSON snapshot of *stats* to *path*.

    Errors are logged at ``WARNING`` level and never propagated.
    """
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(stats.as_dict(), fh, indent=2)
    except OSError:
        logger.warning("Failed to write stats file '%s'.", path, exc_info=True)
