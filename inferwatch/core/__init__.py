"""Core domain models, settings, logging configuration, and shared utilities."""

from inferwatch.core.exceptions import (
    BufferClearError,
    ConfigError,
    DiscoveryError,
    HttpStatusError,
    InferwatchError,
    ProbeError,
    SinkError,
    SinkRateLimitError,
    StorageError,
)
from inferwatch.core.logging_config import JsonFormatter, configure_logging
from inferwatch.core.models import (
    BUFFER_COLUMNS,
    CallOutcome,
    CallResult,
    HttpFailure,
    Success,
    TransportFailure,
    WorkItem,
)
from inferwatch.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "BUFFER_COLUMNS",
    "WorkItem",
    "CallOutcome",
    "CallResult",
    "Success",
    "HttpFailure",
    "TransportFailure",
    # Settings
    "Settings",
    # Exceptions
    "InferwatchError",
    "ConfigError",
    "DiscoveryError",
    "ProbeError",
    "HttpStatusError",
    "StorageError",
    "BufferClearError",
    "SinkError",
    "SinkRateLimitError",
]
