"""Unit tests for :class:`~inferwatch.sink.hub.HubDatasetSink`.

The Hub is replaced by :class:`httpx.MockTransport` and the tenacity wait is
patched to zero so retry tests run instantly.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from inferwatch.core.exceptions import SinkError, SinkRateLimitError
from inferwatch.sink import hub
from inferwatch.sink.hub import HubDatasetSink

_REPO = "me/latency"
_REAL_WAIT = hub._sink_wait


@pytest.fixture(autouse=True)
def _no_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(hub, "_sink_wait", lambda retry_state: 0.0)


def _sink(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> HubDatasetSink:
    return HubDatasetSink(
        "hf_upload",
        _REPO,
        endpoint="https://hub.example",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _ndjson(request: httpx.Request) -> list[dict[str, Any]]:
    return [json.loads(line) for line in request.content.decode("utf-8").splitlines()]


class TestUpload:
    @pytest.mark.asyncio
    async def test_commit_request_shape(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"commitUrl": "https://hub.example/commit/abc"})

        data = b'cycle_timestamp_iso,model_id\n"2026-10-18T09:30:00.000Z","m"\n'
        async with _sink(handler) as sink:
            url = await sink.upload(
                "metrics.csv",
                data,
                "Automated metrics upload 2026-10-18T10:00:00.000Z",
                "Upload metrics data collected up to 2026-10-18T10:00:00.000Z.",
            )

        assert url == "https://hub.example/commit/abc"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == f"/api/datasets/{_REPO}/commit/main"
        assert request.headers["authorization"] == "Bearer hf_upload"
        assert request.headers["content-type"] == "application/x-ndjson"

        header, file_line = _ndjson(request)
        assert header == {
            "key": "header",
            "value": {
                "summary": "Automated metrics upload 2026-10-18T10:00:00.000Z",
                "description": "Upload metrics data collected up to 2026-10-18T10:00:00.000Z.",
            },
        }
        assert file_line["key"] == "file"
        assert file_line["value"]["path"] == "metrics.csv"
        assert file_line["value"]["encoding"] == "base64"
        assert base64.b64decode(file_line["value"]["content"]) == data

    @pytest.mark.asyncio
    async def test_revision_is_part_of_the_path(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        async with _sink(handler, revision="metrics") as sink:
            assert await sink.upload("metrics.csv", b"x", "msg") is None

        assert seen[0].url.path == f"/api/datasets/{_REPO}/commit/metrics"

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self) -> None:
        statuses = iter([503, 500, 200])
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(next(statuses), json={})

        async with _sink(handler) as sink:
            await sink.upload("metrics.csv", b"x", "msg")
        assert calls == 3

    @pytest.mark.asyncio
    async def test_persistent_server_error_raises_sink_error(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(502)

        async with _sink(handler, max_attempts=2) as sink:
            with pytest.raises(SinkError) as excinfo:
                await sink.upload("metrics.csv", b"x", "msg")
        assert excinfo.value.status_code == 502
        assert calls == 2

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried_then_surfaces(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(429, headers={"Retry-After": "7"})

        async with _sink(handler) as sink:
            with pytest.raises(SinkRateLimitError) as excinfo:
                await sink.upload("metrics.csv", b"x", "msg")
        assert calls == 3
        assert excinfo.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_client_error_fails_immediately(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(403, json={"error": "You don't have write access"})

        async with _sink(handler) as sink:
            with pytest.raises(SinkError, match="write access") as excinfo:
                await sink.upload("metrics.csv", b"x", "msg")
        assert calls == 1
        assert excinfo.value.status_code == 403

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("unreachable", request=request)

        async with _sink(handler) as sink:
            with pytest.raises(SinkError, match="Transport error"):
                await sink.upload("metrics.csv", b"x", "msg")
        assert calls == 3


class TestValidation:
    @pytest.mark.parametrize(
        ("token", "repo_id", "attempts"),
        [("", _REPO, 3), ("hf", "", 3), ("hf", _REPO, 0)],
    )
    def test_invalid_arguments(self, token: str, repo_id: str, attempts: int) -> None:
        with pytest.raises(ValueError):
            HubDatasetSink(token, repo_id, max_attempts=attempts)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        sink = _sink(lambda r: httpx.Response(200))
        await sink.close()
        async with sink:
            pass
        await sink.close()


class TestWaitStrategy:
    @staticmethod
    def _state(attempt: int, exc: BaseException | None) -> Any:
        return SimpleNamespace(
            attempt_number=attempt,
            outcome=SimpleNamespace(exception=lambda: exc),
        )

    def test_exponential_backoff_capped(self) -> None:
        waits = [_REAL_WAIT(self._state(n, SinkError("x"))) for n in (1, 2, 3, 10)]
        assert waits == [1.0, 2.0, 4.0, 30.0]

    def test_rate_limit_honours_retry_after(self) -> None:
        assert _REAL_WAIT(self._state(1, SinkRateLimitError(retry_after=12.0))) == 12.0
        assert _REAL_WAIT(self._state(1, SinkRateLimitError(retry_after=600.0))) == 30.0
