"""Inferwatch core domain models.

* :class:`WorkItem`: one (model, provider) pair to probe in a cycle.
* :class:`CallOutcome`: one buffered row: the normalised result of probing a
  work item.  Column order is fixed by :data:`BUFFER_COLUMNS`.
* :data:`CallResult`: the tagged union a probe resolves to before it is
  flattened into a :class:`CallOutcome`:
  :class:`Success`, :class:`HttpFailure` or :class:`TransportFailure`.

Typical usage::

    from inferwatch.core.models import WorkItem

    item = WorkItem(
        model_id="meta-llama/Llama-3.3-70B-Instruct",
        provider_name="together",
        provider_model_id="meta-llama/Llama-3.3-70B-Instruct-Turbo",
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Final

from pydantic import BaseModel, Field

__all__ = [
    "BUFFER_COLUMNS",
    "NO_STATUS",
    "WorkItem",
    "CallOutcome",
    "Success",
    "HttpFailure",
    "TransportFailure",
    "CallResult",
    "to_iso",
    "utc_now",
]

#: Buffer column order.  This ordering is a compatibility contract with the
#: consumers of the uploaded dataset: changing it is a breaking format change.
BUFFER_COLUMNS: Final[tuple[str, ...]] = (
    "cycle_timestamp_iso",
    "model_id",
    "provider_name",
    "provider_model_id",
    "request_url",
    "request_body",
    "request_headers_sanitized",
    "request_start_iso",
    "response_end_iso",
    "duration_ms",
    "response_status_code",
    "response_body_raw",
    "response_headers_sanitized",
    "error_message",
)

#: ``response_status_code`` recorded when no HTTP response was received
#: (connection refused, DNS failure, timeout, unexpected exception).
NO_STATUS: Final[int] = -1


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_iso(moment: datetime) -> str:
    """Format *moment* as ISO-8601 UTC with millisecond precision.

    Example: ``2026-10-18T09:30:00.123Z``.
    """
    moment = moment.astimezone(UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


class WorkItem(BaseModel):
    """One (model, provider) pair to probe.

    Produced fresh every cycle by discovery and never persisted.  Two items
    with equal fields are indistinguishable, and duplicates are probed
    independently.
    """

    model_config = {"frozen": True, "protected_namespaces": ()}

    model_id: str = Field(..., min_length=1, description="Hub model id.")
    provider_name: str = Field(..., min_length=1, description="Inference provider name.")
    provider_model_id: str = Field(
        ...,
        min_length=1,
        description="Model id as the provider knows it.",
    )


# ---------------------------------------------------------------------------
# Buffer row
# ---------------------------------------------------------------------------


class CallOutcome(BaseModel):
    """Normalised result of probing one work item.

    ``error_message == ""`` means the probe succeeded.  Every string field
    that holds a sub-object (body, headers) is already JSON-serialised.
    """

    model_config = {"frozen": True, "protected_namespaces": ()}

    cycle_timestamp_iso: str
    model_id: str
    provider_name: str
    provider_model_id: str
    request_url: str
    request_body: str
    request_headers_sanitized: str
    request_start_iso: str
    response_end_iso: str
    duration_ms: int = Field(..., ge=0)
    response_status_code: int
    response_body_raw: str
    response_headers_sanitized: str
    error_message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.error_message == ""

    def to_row(self) -> list[str | int]:
        """Return the field values in :data:`BUFFER_COLUMNS` order."""
        return [getattr(self, column) for column in BUFFER_COLUMNS]


# ---------------------------------------------------------------------------
# Probe result union
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    """The provider answered with a 2xx response."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


@dataclass(frozen=True)
class HttpFailure:
    """The provider answered, but with a non-2xx status (after retries)."""

    status: int
    message: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


@dataclass(frozen=True)
class TransportFailure:
    """No HTTP response was obtained (network error or unexpected exception)."""

    message: str

    @property
    def status(self) -> int:
        return NO_STATUS

    @property
    def body(self) -> str:
        return f"[Fetch Error: {self.message}]"


CallResult = Success | HttpFailure | TransportFailure
