"""Probe one (model, provider) pair and normalise the result into a buffer row.

:class:`ProviderCaller` owns a single :class:`httpx.AsyncClient` shared by
every probe in a cycle and wraps each request in a
:class:`~inferwatch.probing.retry.RetryExecutor`.

Request shape
-------------
Every probe POSTs the same chat-completion body to the provider's mapped URL:
one user message carrying a fixed arithmetic prompt, ``max_tokens`` from the
settings, the provider-specific model id, and ``stream: false``.  The real
bearer token goes on the wire; the recorded headers have it masked.

Retry policy
------------
* HTTP 5xx and transport-level failures (connect/DNS, timeouts, broken
  connections) are retried: ``max_retries=2`` with a 1 s initial delay
  doubling per retry, by default.
* HTTP 4xx and any other exception are recorded after the first attempt.

Outcome contract
----------------
:meth:`ProviderCaller.call` never raises.  It returns ``None`` when the
provider has no endpoint mapping (a deliberate skip) and a
:class:`~inferwatch.core.models.CallOutcome` in every other case.  Failures
are first resolved into the :data:`~inferwatch.core.models.CallResult`
union, then flattened: ``response_status_code`` is the HTTP status, or
:data:`~inferwatch.core.models.NO_STATUS` when no response was received.

Typical usage::

    async with ProviderCaller(endpoints=mapping, token="hf_...", max_tokens=4096) as caller:
        outcome = await caller.call(item, cycle_timestamp="2026-10-18T09:30:00.000Z")
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from types import TracebackType
from typing import Any, Final

import httpx

from inferwatch.core import events
from inferwatch.core.exceptions import HttpStatusError
from inferwatch.core.models import (
    CallOutcome,
    CallResult,
    HttpFailure,
    Success,
    TransportFailure,
    WorkItem,
    to_iso,
    utc_now,
)
from inferwatch.probing.endpoints import EndpointMapping
from inferwatch.probing.retry import RetryExecutor

__all__ = [
    "MASKED_AUTHORIZATION",
    "PROMPT",
    "ProviderCaller",
    "build_request_body",
    "is_retryable_error",
    "sanitize_headers",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Canonical prompt sent to every provider so latencies are comparable.
PROMPT: Final[str] = "Solve this: 123/2*3.2*9"

#: Recorded in place of the real ``Authorization`` header value.
MASKED_AUTHORIZATION: Final[str] = "Bearer [MASKED]"

#: Transport failures worth another attempt.
_TRANSIENT_TRANSPORT_ERRORS: Final[tuple[type[Exception], ...]] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)

_DEFAULT_TIMEOUT: Final[float] = 60.0
_DEFAULT_MAX_RETRIES: Final[int] = 2
_DEFAULT_INITIAL_DELAY: Final[float] = 1.0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of *headers* with any ``Authorization`` value masked."""
    return {
        key: MASKED_AUTHORIZATION if key.lower() == "authorization" else value
        for key, value in headers.items()
    }


def build_request_body(provider_model_id: str, max_tokens: int) -> dict[str, Any]:
    """Build the fixed chat-completion payload for one probe."""
    return {
        "messages": [{"role": "user", "content": PROMPT}],
        "max_tokens": max_tokens,
        "model": provider_model_id,
        "stream": False,
    }


def is_retryable_error(exc: BaseException) -> bool:
    """``True`` for HTTP 5xx responses and transient transport failures."""
    if isinstance(exc, HttpStatusError):
        return 500 <= exc.status_code <= 599
    return isinstance(exc, _TRANSIENT_TRANSPORT_ERRORS)


def _describe(exc: BaseException) -> str:
    detail = str(exc)
    return f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__


def _read_error_body(response: httpx.Response) -> str:
    try:
        return response.text
    except Exception as exc:  # noqa: BLE001
        return f"[Could not read error response body: {exc}]"


# ---------------------------------------------------------------------------
# Caller
# ---------------------------------------------------------------------------


class ProviderCaller:
    """Issue one probe per work item and build its buffer row.

    Use as an ``async with`` context manager so the connection pool is
    closed on exit.

    Args:
        endpoints: Provider → URL lookup.
        token: Bearer token sent to providers.
        max_tokens: ``max_tokens`` field of every request body.
        retry: Executor applying the back-off schedule.  A default
            :class:`RetryExecutor` is created when omitted.
        max_retries: Retries after the first attempt.
        initial_delay: Seconds before the first retry.
        timeout: Per-attempt timeout in seconds.
        transport: Optional httpx transport (tests inject
            :class:`httpx.MockTransport`).
    """

    def __init__(
        self,
        *,
        endpoints: EndpointMapping,
        token: str,
        max_tokens: int,
        retry: RetryExecutor | None = None,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        initial_delay: float = _DEFAULT_INITIAL_DELAY,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoints = endpoints
        self._token = token
        self._max_tokens = max_tokens
        self._retry = retry or RetryExecutor()
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._timeout = httpx.Timeout(timeout, pool=5.0)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ProviderCaller:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("ProviderCaller HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def call(self, item: WorkItem, cycle_timestamp: str) -> CallOutcome | None:
        """Probe *item* and return its outcome, or ``None`` if it is unmapped.

        Args:
            item: The (model, provider) pair to probe.
            cycle_timestamp: ISO timestamp shared by every outcome of the cycle.

        Returns:
            A populated :class:`CallOutcome`, or ``None`` for an unmapped
            provider.
        """
        url = self._endpoints.resolve(item.provider_name)
        if url is None:
            return None

        body = json.dumps(
            build_request_body(item.provider_model_id, self._max_tokens),
            separators=(",", ":"),
        )
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

        logger.debug(
            "Initiating inference call for %s via %s (%s)",
            item.model_id,
            item.provider_name,
            url,
        )

        started_at = utc_now()
        t0 = time.monotonic()
        result = await self._probe(url, headers, body, item.provider_name)
        duration_ms = int((time.monotonic() - t0) * 1000)
        ended_at = utc_now()

        outcome = self._to_outcome(
            item,
            cycle_timestamp=cycle_timestamp,
            url=url,
            body=body,
            request_headers=headers,
            started_iso=to_iso(started_at),
            ended_iso=to_iso(ended_at),
            duration_ms=duration_ms,
            result=result,
        )

        logger.info(
            "Inference call completed: %s via %s → %d in %d ms%s",
            item.model_id,
            item.provider_name,
            outcome.response_status_code,
            outcome.duration_ms,
            "" if outcome.succeeded else f" ({outcome.error_message})",
            extra={
                "event": events.PROBE_COMPLETE if outcome.succeeded else events.PROBE_FAILED,
                "model_id": item.model_id,
                "provider": item.provider_name,
                "status": outcome.response_status_code,
                "duration_ms": outcome.duration_ms,
            },
        )
        return outcome

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers={"User-Agent": "inferwatch/0.1"},
                transport=self._transport,
            )
            logger.debug("ProviderCaller HTTP session opened.")
        return self._http

    async def _probe(
        self,
        url: str,
        headers: dict[str, str],
        body: str,
        provider: str,
    ) -> CallResult:
        """Run the retried POST and resolve it into a :data:`CallResult`."""
        try:
            client = await self._ensure_client()

            async def _post_once() -> httpx.Response:
                response = await client.post(url, content=body, headers=headers)
                if response.is_success:
                    return response
                raise HttpStatusError(provider, response)

            response = await self._retry.execute(
                _post_once,
                max_retries=self._max_retries,
                initial_delay=self._initial_delay,
                is_retryable=is_retryable_error,
            )
        except HttpStatusError as exc:
            failed = exc.response
            return HttpFailure(
                status=failed.status_code,
                message=f"HTTP error {failed.status_code}: {failed.reason_phrase}",
                headers=sanitize_headers(dict(failed.headers)),
                body=_read_error_body(failed),
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug("Probe to %s failed without a response.", url, exc_info=True)
            return TransportFailure(message=_describe(exc))

        return Success(
            status=response.status_code,
            headers=sanitize_headers(dict(response.headers)),
            body=response.text,
        )

    @staticmethod
    def _to_outcome(
        item: WorkItem,
        *,
        cycle_timestamp: str,
        url: str,
        body: str,
        request_headers: dict[str, str],
        started_iso: str,
        ended_iso: str,
        duration_ms: int,
        result: CallResult,
    ) -> CallOutcome:
        """Flatten a :data:`CallResult` into a :class:`CallOutcome`."""
        match result:
            case Success(status=status, headers=headers, body=raw):
                response_headers, error_message = headers, ""
            case HttpFailure(status=status, headers=headers, body=raw, message=message):
                response_headers, error_message = headers, message
            case TransportFailure(message=message):
                status, raw = result.status, result.body
                response_headers, error_message = {}, message

        return CallOutcome(
            cycle_timestamp_iso=cycle_timestamp,
            model_id=item.model_id,
            provider_name=item.provider_name,
            provider_model_id=item.provider_model_id,
            request_url=url,
            request_body=body,
            request_headers_sanitized=json.dumps(sanitize_headers(request_headers)),
            request_start_iso=started_iso,
            response_end_iso=ended_iso,
            duration_ms=max(duration_ms, 0),
            response_status_code=status,
            response_body_raw=raw,
            response_headers_sanitized=json.dumps(response_headers),
            error_message=error_message,
        )
