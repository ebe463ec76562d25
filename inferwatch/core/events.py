"""Structured log event name constants for the Inferwatch cycle.

Every key transition emits a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the value
surfaces as ``extra.event`` in each emitted JSON object; in text mode the
message text is self-describing and the event is not interpolated.

Usage example::

    import logging
    from inferwatch.core import events

    logger = logging.getLogger(__name__)

    logger.info("Cycle started", extra={"event": events.CYCLE_START})
"""

from __future__ import annotations

__all__ = [
    # Cycle lifecycle
    "CYCLE_START",
    "CYCLE_SKIPPED",
    "CYCLE_COMPLETE",
    "CYCLE_FAILED",
    "CYCLE_CANCELLED",
    # Probes
    "PROBE_SKIPPED",
    "PROBE_COMPLETE",
    "PROBE_FAILED",
    "FANOUT_TASK_ERROR",
    # Buffer
    "BUFFER_APPENDED",
    "BUFFER_HEADER_REPAIRED",
    "BUFFER_TAIL_REPAIRED",
    "BUFFER_CLEAR_FAILED",
    # Flush
    "FLUSH_START",
    "FLUSH_OK",
    "FLUSH_FAILED",
    "FLUSH_EMPTY",
    # Shutdown
    "SHUTDOWN_REQUESTED",
    "SHUTDOWN_CYCLE_CANCELLED",
    "SHUTDOWN_COMPLETE",
]

# ---------------------------------------------------------------------------
# Cycle lifecycle
# ---------------------------------------------------------------------------

#: A tick was accepted and a new cycle body started.
CYCLE_START: str = "CYCLE_START"

#: A tick fired while the previous cycle was still running; nothing was done.
CYCLE_SKIPPED: str = "CYCLE_SKIPPED"

#: The cycle body finished (successfully or not) and the guard was released.
CYCLE_COMPLETE: str = "CYCLE_COMPLETE"

#: The cycle body raised; the error was logged and discarded.
CYCLE_FAILED: str = "CYCLE_FAILED"

#: The cycle task was cancelled mid-body; its partial work was not buffered.
CYCLE_CANCELLED: str = "CYCLE_CANCELLED"

# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------

#: No endpoint mapping exists for a provider; the work item was skipped.
PROBE_SKIPPED: str = "PROBE_SKIPPED"

#: A probe produced an outcome with an empty error message.
PROBE_COMPLETE: str = "PROBE_COMPLETE"

#: A probe produced an outcome carrying an error message.
PROBE_FAILED: str = "PROBE_FAILED"

#: An exception escaped a fan-out task and was isolated.
FANOUT_TASK_ERROR: str = "FANOUT_TASK_ERROR"

# ---------------------------------------------------------------------------
# Buffer
# ---------------------------------------------------------------------------

BUFFER_APPENDED: str = "BUFFER_APPENDED"
BUFFER_HEADER_REPAIRED: str = "BUFFER_HEADER_REPAIRED"
BUFFER_TAIL_REPAIRED: str = "BUFFER_TAIL_REPAIRED"

#: Clearing the buffer failed after a confirmed upload.  Operator attention:
#: the next flush will upload the same rows again.
BUFFER_CLEAR_FAILED: str = "BUFFER_CLEAR_FAILED"

# ---------------------------------------------------------------------------
# Flush
# ---------------------------------------------------------------------------

FLUSH_START: str = "FLUSH_START"
FLUSH_OK: str = "FLUSH_OK"
FLUSH_FAILED: str = "FLUSH_FAILED"
FLUSH_EMPTY: str = "FLUSH_EMPTY"

# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------

SHUTDOWN_REQUESTED: str = "SHUTDOWN_REQUESTED"

#: A cycle outlived the shutdown grace period and was cancelled.
SHUTDOWN_CYCLE_CANCELLED: str = "SHUTDOWN_CYCLE_CANCELLED"
SHUTDOWN_COMPLETE: str = "SHUTDOWN_COMPLETE"
