"""Hugging Face Hub dataset client used as the remote flush sink.

Provides :class:`HubDatasetSink`, a lightweight async wrapper around the Hub
commit endpoint::

    POST {endpoint}/api/datasets/{repo_id}/commit/{revision}
    Content-Type: application/x-ndjson

The body is newline-delimited JSON: one ``header`` line carrying the commit
summary and description, then one ``file`` line carrying the file content
base64-encoded.  A commit replaces the file at ``path_in_repo`` atomically.

The client handles:

* A keep-alive :class:`httpx.AsyncClient` with an explicit timeout budget.
* Automatic retries with capped exponential back-off via :mod:`tenacity`.
* ``Retry-After`` header honouring on HTTP 429 responses.
* Structured exception mapping to
  :class:`~inferwatch.core.exceptions.SinkError` and
  :class:`~inferwatch.core.exceptions.SinkRateLimitError`.

Typical usage::

    async with HubDatasetSink(token="hf_...", repo_id="me/latency") as sink:
        url = await sink.upload("metrics.csv", data, "Automated metrics upload ...")
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from inferwatch.core.exceptions import SinkError, SinkRateLimitError

__all__ = ["HubDatasetSink"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DEFAULT_ENDPOINT: Final[str] = "https://huggingface.co"

#: HTTP status codes that indicate a transient server error and are safe to retry.
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

_DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0

#: Large buffers can take a while to upload and be committed.
_DEFAULT_READ_TIMEOUT: Final[float] = 120.0
_DEFAULT_WRITE_TIMEOUT: Final[float] = 120.0

#: Default total upload attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Hard cap on exponential back-off (seconds).
_MAX_BACKOFF: Final[float] = 30.0


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(SinkError):
    """Internal sentinel raised on 5xx to trigger a tenacity retry.

    Only escapes :meth:`HubDatasetSink._upload_with_retry` once retries are
    exhausted, where it is still a :class:`SinkError`.
    """


# ---------------------------------------------------------------------------
# Wait strategy
# ---------------------------------------------------------------------------


def _sink_wait(retry_state: RetryCallState) -> float:
    """Seconds to sleep before the next upload attempt.

    Honours ``retry_after`` from a :class:`SinkRateLimitError`; otherwise
    1, 2, 4 … seconds capped at :data:`_MAX_BACKOFF`.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if isinstance(exc, SinkRateLimitError) and exc.retry_after > 0:
            return min(exc.retry_after, _MAX_BACKOFF)
    attempt = max(retry_state.attempt_number, 1)
    return min(2.0 ** (attempt - 1), _MAX_BACKOFF)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HubDatasetSink:
    """Commit single files to a Hub dataset repository.

    Args:
        token: Hub access token with write permission on the repository.
        repo_id: Dataset repository id (``"owner/name"``).
        endpoint: Hub base URL.
        revision: Branch to commit to.
        max_attempts: Total upload attempts including the first.  Must be ≥ 1.
        transport: Optional httpx transport (tests inject
            :class:`httpx.MockTransport`).

    Raises:
        ValueError: If ``token``, ``repo_id`` or ``max_attempts`` are invalid.
    """

    def __init__(
        self,
        token: str,
        repo_id: str,
        *,
        endpoint: str = _DEFAULT_ENDPOINT,
        revision: str = "main",
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("HubDatasetSink requires a non-empty token.")
        if not repo_id:
            raise ValueError("HubDatasetSink requires a non-empty repo_id.")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._token = token
        self._repo_id = repo_id
        self._endpoint = endpoint.rstrip("/")
        self._revision = revision
        self._max_attempts = max_attempts
        self._transport = transport
        self._timeout = httpx.Timeout(
            connect=_DEFAULT_CONNECT_TIMEOUT,
            read=_DEFAULT_READ_TIMEOUT,
            write=_DEFAULT_WRITE_TIMEOUT,
            pool=5.0,
        )
        self._http: httpx.AsyncClient | None = None

    @property
    def repo_id(self) -> str:
        return self._repo_id

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> HubDatasetSink:
        await self._ensure_http_client()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def upload(
        self,
        path_in_repo: str,
        content: bytes,
        commit_message: str,
        commit_description: str = "",
    ) -> str | None:
        """Commit *content* as *path_in_repo*, replacing any previous version.

        Retries automatically on transport errors, HTTP 429 and HTTP 5xx.
        Other non-2xx statuses fail immediately.

        Returns:
            The commit URL when the Hub reports one, else ``None``.

        Raises:
            SinkRateLimitError: After exhausting retries on HTTP 429.
            SinkError: For any other failure.
        """
        payload = _build_commit_payload(
            path_in_repo, content, commit_message, commit_description
        )
        try:
            return await self._upload_with_retry(payload)
        except httpx.TransportError as exc:
            raise SinkError(f"Transport error uploading to {self._repo_id}: {exc!r}") from exc

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("HubDatasetSink HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._endpoint,
                timeout=self._timeout,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "User-Agent": "inferwatch/0.1",
                },
                transport=self._transport,
            )
            logger.debug("HubDatasetSink HTTP session opened.")
        return self._http

    async def _upload_with_retry(self, payload: bytes) -> str | None:
        retry_types = (
            SinkRateLimitError,
            _RetryableServerError,
            httpx.TransportError,
        )

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Hub upload attempt %d/%d failed (%s), retrying in %.1f s.",
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
                _sink_wait(rs),
            )

        commit_url: str | None = None
        async for attempt in AsyncRetrying(
            wait=_sink_wait,
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(retry_types),
            reraise=True,
            before_sleep=_before_sleep,
        ):
            with attempt:
                commit_url = await self._single_attempt(payload)
        return commit_url

    async def _single_attempt(self, payload: bytes) -> str | None:
        """Perform exactly one commit POST.

        Raises:
            SinkRateLimitError: HTTP 429.
            _RetryableServerError: HTTP 5xx.
            SinkError: Any other non-2xx status.
            httpx.TransportError: Network-level failure, left for tenacity.
        """
        client = await self._ensure_http_client()
        endpoint = f"/api/datasets/{self._repo_id}/commit/{self._revision}"

        logger.debug("Hub POST %s (%d bytes)", endpoint, len(payload))
        response = await client.post(
            endpoint,
            content=payload,
            headers={"Content-Type": "application/x-ndjson"},
        )
        logger.debug("Hub response: HTTP %d", response.status_code)

        if response.is_success:
            return _extract_commit_url(response)

        if response.status_code == 429:
            retry_after = _parse_retry_after(response)
            logger.warning("Hub rate limit (HTTP 429), retry_after=%.1f s", retry_after)
            raise SinkRateLimitError(retry_after=retry_after)

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                f"Transient server error: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        raise SinkError(_extract_error(response), status_code=response.status_code)


# ---------------------------------------------------------------------------
# Payload and response helpers
# ---------------------------------------------------------------------------


def _build_commit_payload(
    path_in_repo: str,
    content: bytes,
    summary: str,
    description: str,
) -> bytes:
    """Serialise a single-file commit as NDJSON."""
    lines = [
        {"key": "header", "value": {"summary": summary, "description": description}},
        {
            "key": "file",
            "value": {
                "content": base64.b64encode(content).decode("ascii"),
                "path": path_in_repo,
                "encoding": "base64",
            },
        },
    ]
    return "\n".join(json.dumps(line) for line in lines).encode("utf-8")


def _extract_commit_url(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    url = body.get("commitUrl") if isinstance(body, dict) else None
    return str(url) if url else None


def _parse_retry_after(response: httpx.Response) -> float:
    """Read ``Retry-After`` in seconds, defaulting to 1.0 (never below 1.0)."""
    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            pass
    return 1.0


def _extract_error(response: httpx.Response) -> str:
    """Human-readable error from a non-2xx Hub response (never empty)."""
    try:
        body = response.json()
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
    except ValueError:
        pass
    return response.text or f"HTTP {response.status_code}"
