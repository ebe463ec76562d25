"""The cycle orchestrator: no-overlap guard, cycle body, and shutdown flush.

One :class:`CycleOrchestrator` instance owns the process-wide
:class:`CycleState` (running flag and cycle counter).  Nothing else mutates
it; the scheduler and the shutdown path only query it through the instance.

State machine
-------------
``Idle → Running → Idle``.  :meth:`CycleOrchestrator.tick`:

* When a cycle is already running, logs a skip and returns ``None``.  The
  counter does not move.
* Otherwise flips the flag, increments the counter, captures one timestamp
  shared by every outcome of the cycle, and runs the body::

      discovery → fan-out → buffer append → flush every N cycles

* The check and the flip happen with no ``await`` between them, so two ticks
  on the same event loop can never both pass the guard.
* Every exception from the body is caught here, logged with the cycle number
  and discarded; the flag is reset in ``finally`` whatever happened.

:meth:`CycleOrchestrator.shutdown` performs the best-effort final flush, but
only when no cycle is running.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from inferwatch.core import events
from inferwatch.core.exceptions import BufferClearError
from inferwatch.core.logging_config import CYCLE_ID_CTX
from inferwatch.core.models import CallOutcome, WorkItem, to_iso, utc_now
from inferwatch.orchestrator.flush import FlushCoordinator
from inferwatch.orchestrator.pipeline import FanOutRunner
from inferwatch.storage.buffer import BufferStore

__all__ = [
    "CycleOrchestrator",
    "CycleReport",
    "CycleState",
    "WorkSource",
]

logger = logging.getLogger(__name__)


class WorkSource(Protocol):
    """Discovery collaborator (see :class:`HubModelDiscovery`)."""

    async def fetch_work_items(self) -> Sequence[WorkItem]: ...  # pragma: no cover


# ---------------------------------------------------------------------------
# State and report data classes
# ---------------------------------------------------------------------------


@dataclass
class CycleState:
    """Mutable scheduling state owned by one :class:`CycleOrchestrator`.

    Attributes:
        running: ``True`` while a cycle body executes.
        cycle_counter: Accepted cycles so far.  Never incremented by a
            skipped tick.
        skipped_ticks: Ticks rejected because a cycle was running.
    """

    running: bool = False
    cycle_counter: int = 0
    skipped_ticks: int = 0


@dataclass
class CycleReport:
    """What happened during one accepted cycle.

    Attributes:
        cycle: Cycle number.
        timestamp: Timestamp shared by every outcome of the cycle.
        work_items: Items returned by discovery.
        outcomes: Outcomes produced by the fan-out.
        appended: Rows written to the buffer.
        flush_attempted: ``True`` if this cycle reached the push interval.
        flushed: ``True`` if the flush uploaded and cleared the buffer.
        error: Description of the error that aborted the cycle, if any.
        duration_s: Wall-clock duration of the cycle.
    """

    cycle: int
    timestamp: str
    work_items: int = 0
    outcomes: list[CallOutcome] = field(default_factory=list)
    appended: int = 0
    flush_attempted: bool = False
    flushed: bool = False
    error: str | None = None
    duration_s: float = 0.0

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def failed_outcomes(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.succeeded)

    def format_cycle_report(self) -> str:
        """One-line summary for the cycle-complete log record."""
        if self.flush_attempted:
            flush = "uploaded" if self.flushed else "not uploaded"
        else:
            flush = "not due"
        status = f"FAILED ({self.error})" if self.failed else "ok"
        return (
            f"Finished cycle {self.cycle} in {self.duration_s * 1000:.0f} ms: "
            f"status={status} items={self.work_items} outcomes={len(self.outcomes)} "
            f"failed_outcomes={self.failed_outcomes} appended={self.appended} "
            f"flush={flush}"
        )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CycleOrchestrator:
    """Run cycles one at a time and flush every ``push_interval_cycles``.

    Args:
        discovery: Source of the work items for each cycle.
        fanout: Concurrent prober.
        buffer: Local buffer receiving every cycle's outcomes.
        flusher: Buffer → remote sink flush.
        push_interval_cycles: Flush when ``cycle_counter`` is a multiple of
            this value.
        clock: Source of the cycle timestamp.

    Raises:
        ValueError: If ``push_interval_cycles`` is not positive.
    """

    def __init__(
        self,
        *,
        discovery: WorkSource,
        fanout: FanOutRunner,
        buffer: BufferStore,
        flusher: FlushCoordinator,
        push_interval_cycles: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if push_interval_cycles < 1:
            raise ValueError(
                f"push_interval_cycles must be ≥ 1, got {push_interval_cycles!r}."
            )
        self._discovery = discovery
        self._fanout = fanout
        self._buffer = buffer
        self._flusher = flusher
        self._push_interval = push_interval_cycles
        self._clock = clock
        self._state = CycleState()

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.running

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> CycleReport | None:
        """Run one cycle unless one is already in progress.

        Returns:
            The :class:`CycleReport`, or ``None`` when the tick was skipped.
            Never raises for a failure inside the cycle body.  Cancellation
            is recorded on the report as ``cancelled`` and propagates.
        """
        state = self._state
        if state.running:
            state.skipped_ticks += 1
            logger.warning(
                "Previous cycle %d still running; skipping this tick.",
                state.cycle_counter,
                extra={"event": events.CYCLE_SKIPPED, "cycle": state.cycle_counter},
            )
            return None

        state.running = True
        state.cycle_counter += 1
        cycle = state.cycle_counter
        report = CycleReport(cycle=cycle, timestamp=to_iso(self._clock()))
        token = CYCLE_ID_CTX.set(str(cycle))
        t0 = time.monotonic()

        logger.info(
            "Starting cycle %d at %s",
            cycle,
            report.timestamp,
            extra={"event": events.CYCLE_START, "cycle": cycle},
        )
        try:
            await self._run_body(report)
        except BufferClearError as exc:
            report.error = str(exc)
            logger.critical(
                "Cycle %d: upload succeeded but the buffer could not be cleared. "
                "Local and remote data now overlap and the next flush will "
                "upload these rows again: %s",
                cycle,
                exc,
                exc_info=True,
                extra={"event": events.BUFFER_CLEAR_FAILED, "cycle": cycle},
            )
        except asyncio.CancelledError:
            report.error = "cancelled"
            logger.warning(
                "Cycle %d was cancelled before it finished.",
                cycle,
                extra={"event": events.CYCLE_CANCELLED, "cycle": cycle},
            )
            raise
        except Exception as exc:
            report.error = f"{type(exc).__name__}: {exc}"
            logger.exception(
                "Critical error during cycle %d; the next tick will run normally.",
                cycle,
                extra={"event": events.CYCLE_FAILED, "cycle": cycle},
            )
        finally:
            state.running = False
            report.duration_s = time.monotonic() - t0
            logger.info(
                "%s",
                report.format_cycle_report(),
                extra={"event": events.CYCLE_COMPLETE, "cycle": cycle},
            )
            CYCLE_ID_CTX.reset(token)
        return report

    async def _run_body(self, report: CycleReport) -> None:
        items = await self._discovery.fetch_work_items()
        report.work_items = len(items)

        if not items:
            logger.warning("No models found or fetched. Skipping inference calls for this cycle.")
        else:
            logger.info("Processing %d work item(s)...", len(items))
            report.outcomes = await self._fanout.run(items, report.timestamp)

        if report.outcomes:
            report.appended = await asyncio.to_thread(self._buffer.append, report.outcomes)
        else:
            logger.info("No inference results to append in this cycle.")

        if report.cycle % self._push_interval == 0:
            logger.info(
                "Push interval reached (cycle %d). Flushing buffer.", report.cycle
            )
            report.flush_attempted = True
            report.flushed = await self._flusher.flush()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> bool:
        """Final best-effort flush, skipped while a cycle is running.

        Errors are logged and swallowed.

        Returns:
            ``True`` if the final flush uploaded the buffer.
        """
        if self._state.running:
            logger.warning(
                "Cycle %d is still running. Skipping final upload to avoid conflicts.",
                self._state.cycle_counter,
            )
            return False

        logger.info("Attempting final data upload before exit...")
        try:
            return await self._flusher.flush()
        except Exception:
            logger.exception("Error during final data upload.")
            return False
