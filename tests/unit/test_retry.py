"""Unit tests for :class:`~inferwatch.probing.retry.RetryExecutor`.

The executor's sleep is replaced by a recorder so back-off delays can be
asserted without waiting.
"""

from __future__ import annotations

import pytest

from inferwatch.probing.retry import RetryExecutor


class _Transient(Exception):
    pass


class _Fatal(Exception):
    pass


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, _Transient)


class _Recorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class _Flaky:
    """Operation failing with the queued exceptions, then returning ``value``."""

    def __init__(self, *failures: BaseException, value: str = "ok") -> None:
        self._failures = list(failures)
        self._value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self._failures:
            raise self._failures.pop(0)
        return self._value


@pytest.fixture()
def sleep() -> _Recorder:
    return _Recorder()


@pytest.fixture()
def executor(sleep: _Recorder) -> RetryExecutor:
    return RetryExecutor(sleep=sleep)


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_sleep(
        self, executor: RetryExecutor, sleep: _Recorder
    ) -> None:
        op = _Flaky()
        result = await executor.execute(op, max_retries=2, initial_delay=1.0, is_retryable=_is_transient)
        assert result == "ok"
        assert op.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_always_failing_operation_runs_max_retries_plus_one_times(
        self, executor: RetryExecutor, sleep: _Recorder
    ) -> None:
        op = _Flaky(_Transient("1"), _Transient("2"), _Transient("3"), _Transient("4"))
        with pytest.raises(_Transient, match="3"):
            await executor.execute(op, max_retries=2, initial_delay=1.0, is_retryable=_is_transient)
        assert op.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_short_circuits(
        self, executor: RetryExecutor, sleep: _Recorder
    ) -> None:
        op = _Flaky(_Fatal("nope"))
        with pytest.raises(_Fatal):
            await executor.execute(op, max_retries=2, initial_delay=1.0, is_retryable=_is_transient)
        assert op.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(
        self, executor: RetryExecutor, sleep: _Recorder
    ) -> None:
        op = _Flaky(_Transient("a"), _Transient("b"), value="done")
        result = await executor.execute(op, max_retries=2, initial_delay=1.0, is_retryable=_is_transient)
        assert result == "done"
        assert op.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_after_retryable_stops_immediately(
        self, executor: RetryExecutor, sleep: _Recorder
    ) -> None:
        op = _Flaky(_Transient("a"), _Fatal("b"))
        with pytest.raises(_Fatal):
            await executor.execute(op, max_retries=5, initial_delay=0.5, is_retryable=_is_transient)
        assert op.calls == 2
        assert sleep.delays == [0.5]

    @pytest.mark.asyncio
    async def test_delay_growth_is_capped(self, sleep: _Recorder) -> None:
        executor = RetryExecutor(max_delay=3.0, sleep=sleep)
        op = _Flaky(*(_Transient(str(i)) for i in range(5)))
        await executor.execute(op, max_retries=5, initial_delay=1.0, is_retryable=_is_transient)
        assert sleep.delays == [1.0, 2.0, 3.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(
        self, executor: RetryExecutor, sleep: _Recorder
    ) -> None:
        op = _Flaky(_Transient("x"))
        with pytest.raises(_Transient):
            await executor.execute(op, max_retries=0, initial_delay=1.0, is_retryable=_is_transient)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_negative_arguments_rejected(self, executor: RetryExecutor) -> None:
        with pytest.raises(ValueError):
            await executor.execute(_Flaky(), max_retries=-1, initial_delay=1.0, is_retryable=_is_transient)
        with pytest.raises(ValueError):
            await executor.execute(_Flaky(), max_retries=1, initial_delay=-1.0, is_retryable=_is_transient)

    def test_non_positive_max_delay_rejected(self) -> None:
        with pytest.raises(ValueError):
            RetryExecutor(max_delay=0)
