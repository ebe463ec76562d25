"""Bounded retry with exponential back-off for a single async operation.

:class:`RetryExecutor` is a pure control-flow decorator around an awaitable
factory: it performs no I/O of its own beyond sleeping between attempts.
The caller decides which failures are transient by supplying an
``is_retryable`` predicate.

Policy
------
* The operation is attempted up to ``max_retries + 1`` times.
* A failure is propagated immediately when the predicate rejects it or the
  retry budget is spent, with no trailing sleep.
* Otherwise the executor sleeps ``delay`` and doubles it for the next retry
  (``initial_delay``, ``2 × initial_delay``, ``4 × initial_delay`` …), never
  exceeding ``max_delay``.  No jitter is added.

The schedule is driven by :mod:`tenacity`; the sleep coroutine is injectable
so tests can record delays without waiting.

Typical usage::

    executor = RetryExecutor()
    response = await executor.execute(
        lambda: client.post(url, content=body),
        max_retries=2,
        initial_delay=1.0,
        is_retryable=lambda exc: isinstance(exc, httpx.TransportError),
    )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Final, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

__all__ = ["RetryExecutor", "DEFAULT_MAX_DELAY"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Ceiling on a single back-off delay (seconds).
DEFAULT_MAX_DELAY: Final[float] = 30.0


class RetryExecutor:
    """Run an async operation with bounded retries and exponential back-off.

    Args:
        max_delay: Upper bound on any single back-off delay, in seconds.
        sleep: Coroutine used to wait between attempts.  Defaults to
            :func:`asyncio.sleep`.

    Raises:
        ValueError: If ``max_delay`` is not positive.
    """

    def __init__(
        self,
        *,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_delay <= 0:
            raise ValueError(f"max_delay must be > 0, got {max_delay!r}.")
        self._max_delay = max_delay
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_retries: int,
        initial_delay: float,
        is_retryable: Callable[[BaseException], bool],
    ) -> T:
        """Await ``operation()`` until it succeeds or retrying stops.

        Args:
            operation: Zero-argument callable returning a fresh awaitable on
                every call.
            max_retries: Retries allowed after the first attempt (≥ 0).
            initial_delay: Seconds to wait before the first retry (≥ 0).
            is_retryable: Predicate deciding whether a failure is transient.

        Returns:
            The value produced by the first successful attempt.

        Raises:
            ValueError: If ``max_retries`` or ``initial_delay`` is negative.
            Exception: The last error raised by ``operation`` once retries are
                exhausted, or the first error the predicate rejects.
        """
        if max_retries < 0:
            raise ValueError(f"max_retries must be ≥ 0, got {max_retries!r}.")
        if initial_delay < 0:
            raise ValueError(f"initial_delay must be ≥ 0, got {initial_delay!r}.")

        max_attempts = max_retries + 1
        wait = wait_exponential(multiplier=initial_delay, exp_base=2, max=self._max_delay)

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Attempt %d/%d failed (%s: %s); retrying in %.1f s",
                rs.attempt_number,
                max_attempts,
                type(exc).__name__ if exc else "?",
                exc,
                wait(rs),
            )

        result: T | None = None
        async for attempt in AsyncRetrying(
            sleep=self._sleep,
            wait=wait,
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception(is_retryable),
            reraise=True,
            before_sleep=_before_sleep,
        ):
            with attempt:
                result = await operation()
        return result  # type: ignore[return-value]
