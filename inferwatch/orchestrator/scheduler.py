"""Continuous fixed-interval scheduler for Inferwatch.

The first tick fires immediately, then one tick every
``SCHEDULE_INTERVAL_SECONDS`` on a fixed timeline: tick *n* is due at
``start + n × interval`` no matter how long earlier cycles took.  Each tick
runs as its own task so a slow cycle never delays the timer; a tick that
lands while a cycle is still running is rejected by the orchestrator's
no-overlap guard.

Shutdown
~~~~~~~~
``SIGINT`` and ``SIGTERM`` set a stop event.  The timer stops and a cycle
still in flight is given ``SHUTDOWN_GRACE_SECONDS`` to finish, so its rows
reach the buffer.  Then
:meth:`~inferwatch.orchestrator.cycle.CycleOrchestrator.shutdown` performs
the final flush when no cycle is running.  Only a cycle that outlives the
grace period is cancelled.

Health
~~~~~~
After every tick a heartbeat file (epoch seconds) and a JSON stats snapshot
are rewritten.  Paths come from ``INFERWATCH_HEARTBEAT_PATH`` and
``INFERWATCH_STATS_PATH``.

Typical usage::

    import asyncio
    from inferwatch.orchestrator.scheduler import run_continuous

    asyncio.run(run_continuous())
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time

from inferwatch.core import events
from inferwatch.core.settings import Settings
from inferwatch.orchestrator.cycle import CycleOrchestrator
from inferwatch.orchestrator.metrics import LifetimeStats, write_stats_file
from inferwatch.orchestrator.runner import open_orchestrator

__all__ = [
    "HEARTBEAT_PATH",
    "run_continuous",
    "run_schedule",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Health-check heartbeat
# ---------------------------------------------------------------------------

#: Path to the heartbeat file written after each tick.  Override via the
#: ``INFERWATCH_HEARTBEAT_PATH`` environment variable if ``/tmp`` is not
#: writable.
HEARTBEAT_PATH: str = os.environ.get("INFERWATCH_HEARTBEAT_PATH", "/tmp/inferwatch_heartbeat")

_STOP_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)

#: Default wait for an in-flight cycle after a stop request.
DEFAULT_SHUTDOWN_GRACE_S: float = 120.0


def _write_heartbeat(path: str = HEARTBEAT_PATH) -> None:
    """Write the current epoch timestamp to the heartbeat file.

    Errors are logged at WARNING level and never propagated.
    """
    try:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(str(time.time()))
    except OSError:
        logger.warning("Failed to write heartbeat file '%s'.", path, exc_info=True)


# ---------------------------------------------------------------------------
# Timer loop
# ---------------------------------------------------------------------------


async def _tick_and_record(orchestrator: CycleOrchestrator, stats: LifetimeStats) -> None:
    report = await orchestrator.tick()
    stats.update(report, skipped_ticks=orchestrator.state.skipped_ticks)
    _write_heartbeat()
    write_stats_file(stats)
    if report is not None:
        logger.debug("%s", stats.format_summary())


async def _drain(tasks: set[asyncio.Task[None]], grace_s: float) -> None:
    """Wait up to *grace_s* for *tasks*; leftovers are cancelled by the caller."""
    if not tasks:
        return
    logger.info("Waiting up to %s seconds for the running cycle to finish.", grace_s)
    _done, pending = await asyncio.wait(set(tasks), timeout=grace_s)
    if pending:
        logger.warning(
            "Cycle still running after %s seconds; cancelling it.",
            grace_s,
            extra={"event": events.SHUTDOWN_CYCLE_CANCELLED},
        )


async def run_schedule(
    orchestrator: CycleOrchestrator,
    interval_s: float,
    stop: asyncio.Event,
    *,
    stats: LifetimeStats | None = None,
    grace_s: float = DEFAULT_SHUTDOWN_GRACE_S,
) -> LifetimeStats:
    """Tick *orchestrator* every *interval_s* seconds until *stop* is set.

    Args:
        orchestrator: The orchestrator to drive.
        interval_s: Seconds between tick start times.
        stop: Event ending the loop.
        stats: Lifetime stats to update; a fresh instance when ``None``.
        grace_s: How long a cycle still running at stop time may take to
            finish before it is cancelled.

    Returns:
        The lifetime stats accumulated by this run.
    """
    if interval_s <= 0:
        raise ValueError(f"interval_s must be > 0, got {interval_s!r}.")
    stats = stats if stats is not None else LifetimeStats()

    loop = asyncio.get_running_loop()
    in_flight: set[asyncio.Task[None]] = set()
    next_fire = loop.time()

    logger.info("Starting scheduler. Interval: %s seconds.", interval_s)
    try:
        while not stop.is_set():
            task = asyncio.create_task(
                _tick_and_record(orchestrator, stats), name="inferwatch-tick"
            )
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)

            next_fire += interval_s
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=max(next_fire - loop.time(), 0))

        logger.info("Scheduler stopped.")
        await _drain(in_flight, grace_s)
        await orchestrator.shutdown()
    finally:
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)

    return stats


# ---------------------------------------------------------------------------
# Public entry-point
# ---------------------------------------------------------------------------


async def run_continuous(settings: Settings | None = None) -> LifetimeStats:
    """Run Inferwatch until SIGINT or SIGTERM.

    Assembles the runtime once via
    :func:`~inferwatch.orchestrator.runner.open_orchestrator` and hands it to
    :func:`run_schedule`.  Signal handlers are removed in a ``finally``
    block so they do not leak into a later :func:`asyncio.run`.

    Raises:
        ConfigError: If required credentials are missing.
    """
    if settings is None:
        settings = Settings()

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _request_shutdown(signame: str) -> None:
        if stop.is_set():
            return
        logger.info(
            "Received %s. Shutting down gracefully...",
            signame,
            extra={"event": events.SHUTDOWN_REQUESTED, "signal": signame},
        )
        stop.set()

    for sig in _STOP_SIGNALS:
        loop.add_signal_handler(sig, _request_shutdown, sig.name)

    try:
        async with open_orchestrator(settings) as orchestrator:
            stats = await run_schedule(
                orchestrator,
                settings.schedule_interval_seconds,
                stop,
                grace_s=settings.shutdown_grace_seconds,
            )
    finally:
        for sig in _STOP_SIGNALS:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(sig)

    logger.info("%s", stats.format_summary())
    logger.info("Shutdown complete. Exiting.", extra={"event": events.SHUTDOWN_COMPLETE})
    return stats
