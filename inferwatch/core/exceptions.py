"""Inferwatch exception taxonomy.

Every custom exception inherits from :class:`InferwatchError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    InferwatchError
    ├── ConfigError
    ├── DiscoveryError
    ├── ProbeError
    │   └── HttpStatusError
    ├── StorageError
    │   └── BufferClearError
    └── SinkError
        └── SinkRateLimitError

Usage:

    from inferwatch.core.exceptions import DiscoveryError

    raise DiscoveryError("Models API returned HTTP 502") from exc
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

__all__ = [
    "InferwatchError",
    # Config
    "ConfigError",
    # Discovery
    "DiscoveryError",
    # Probing
    "ProbeError",
    "HttpStatusError",
    # Storage
    "StorageError",
    "BufferClearError",
    # Sink
    "SinkError",
    "SinkRateLimitError",
]

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class InferwatchError(Exception):
    """Root exception for all Inferwatch errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(InferwatchError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - ``HF_TOKEN`` or ``HF_HUB_TOKEN`` is empty when the runtime is
          assembled.
        - ``HF_DATASET_REPO_ID`` is missing, so no flush destination exists.
    """


# ---------------------------------------------------------------------------
# Discovery layer
# ---------------------------------------------------------------------------


class DiscoveryError(InferwatchError):
    """Raised when the list of models / providers to probe cannot be fetched.

    A discovery failure aborts the current cycle (it is logged by the cycle
    orchestrator) but never stops the scheduler.
    """


# ---------------------------------------------------------------------------
# Probing layer
# ---------------------------------------------------------------------------


class ProbeError(InferwatchError):
    """Base class for failures raised inside a single probe attempt.

    Args:
        provider: Provider name the probe was addressed to.
        message: Human-readable error description.
    """

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class HttpStatusError(ProbeError):
    """Raised when a probe receives a non-2xx HTTP response.

    The response travels with the exception so the retry predicate can
    inspect the status code and the caller can record headers and body of
    the final failed attempt.

    Args:
        provider: Provider name the probe was addressed to.
        response: The non-2xx :class:`httpx.Response`.
    """

    def __init__(self, provider: str, response: httpx.Response) -> None:
        self.response = response
        self.status_code = response.status_code
        super().__init__(
            provider,
            f"HTTP error {response.status_code}: {response.reason_phrase}",
        )


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(InferwatchError):
    """Raised when the local buffer cannot be written or read."""


class BufferClearError(StorageError):
    """Raised when the buffer cannot be reset to header-only.

    This is the one storage failure that must never be swallowed: if it
    happens after a confirmed upload, the next flush re-uploads rows that the
    remote store already has.

    Args:
        path: Buffer file path.
        reason: Underlying error description.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Failed to clear buffer {path!r}: {reason}")


# ---------------------------------------------------------------------------
# Sink layer
# ---------------------------------------------------------------------------


class SinkError(InferwatchError):
    """Raised when the remote sink rejects or cannot receive an upload.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code from the sink, if available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Sink error{detail}: {message}")


class SinkRateLimitError(SinkError):
    """Raised when the remote sink answers HTTP 429.

    Args:
        retry_after: Seconds to wait before retrying, as reported by the sink.
    """

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Rate limited; retry after {retry_after}s",
            status_code=429,
        )
