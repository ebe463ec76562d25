"""Per-cycle fan-out: probe every work item concurrently.

:class:`FanOutRunner` launches one task per
:class:`~inferwatch.core.models.WorkItem` and waits for **all** of them to
settle before returning, via ``asyncio.gather(..., return_exceptions=True)``.

Failure isolation
-----------------
:meth:`~inferwatch.probing.caller.ProviderCaller.call` is not supposed to
raise, but the runner does not rely on it: an exception escaping one task is
logged and counted as "no outcome" for that item while every other task runs
to completion.  ``asyncio.CancelledError`` is not an error here and is
re-raised so cancellation of the cycle still propagates.

Ordering of the returned outcomes follows the order of the input items, but
callers must not rely on it.  Duplicate items are probed independently.

Typical usage::

    runner = FanOutRunner(caller)
    outcomes = await runner.run(items, cycle_timestamp="2026-10-18T09:30:00.000Z")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from inferwatch.core import events
from inferwatch.core.models import CallOutcome, WorkItem

__all__ = ["FanOutRunner", "ProbeCaller"]

logger = logging.getLogger(__name__)


class ProbeCaller(Protocol):
    """Anything that can probe one work item (see :class:`ProviderCaller`)."""

    async def call(
        self, item: WorkItem, cycle_timestamp: str
    ) -> CallOutcome | None: ...  # pragma: no cover


class FanOutRunner:
    """Run one probe per work item concurrently with per-item isolation.

    Args:
        caller: Probe implementation shared by every task.
    """

    def __init__(self, caller: ProbeCaller) -> None:
        self._caller = caller

    async def run(
        self,
        work_items: Sequence[WorkItem],
        cycle_timestamp: str,
    ) -> list[CallOutcome]:
        """Probe every item and return the outcomes that were produced.

        Skipped items (unmapped provider) and items whose task raised produce
        no outcome.  Never fails fast.

        Args:
            work_items: Items for this cycle.  May be empty.
            cycle_timestamp: Timestamp stamped on every outcome of the cycle.

        Returns:
            The produced :class:`CallOutcome` objects.
        """
        if not work_items:
            return []

        raw_results = await asyncio.gather(
            *(self._caller.call(item, cycle_timestamp) for item in work_items),
            return_exceptions=True,
        )

        outcomes: list[CallOutcome] = []
        skipped = 0
        errors = 0
        for item, result in zip(work_items, raw_results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                errors += 1
                logger.error(
                    "Probe task for %s via %s raised unexpectedly; no outcome recorded: %s",
                    item.model_id,
                    item.provider_name,
                    result,
                    exc_info=result,
                    extra={
                        "event": events.FANOUT_TASK_ERROR,
                        "model_id": item.model_id,
                        "provider": item.provider_name,
                    },
                )
            elif result is None:
                skipped += 1
            else:
                outcomes.append(result)

        logger.info(
            "Fan-out settled: items=%d outcomes=%d skipped=%d task_errors=%d",
            len(work_items),
            len(outcomes),
            skipped,
            errors,
        )
        return outcomes
