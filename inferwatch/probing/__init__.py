"""Provider probing: endpoint lookup, retry with back-off, and the caller."""

from inferwatch.probing.caller import (
    MASKED_AUTHORIZATION,
    PROMPT,
    ProviderCaller,
    build_request_body,
    is_retryable_error,
    sanitize_headers,
)
from inferwatch.probing.endpoints import EndpointMapping, load_endpoint_mapping
from inferwatch.probing.retry import DEFAULT_MAX_DELAY, RetryExecutor

__all__ = [
    # Endpoints
    "EndpointMapping",
    "load_endpoint_mapping",
    # Retry
    "RetryExecutor",
    "DEFAULT_MAX_DELAY",
    # Caller
    "ProviderCaller",
    "PROMPT",
    "MASKED_AUTHORIZATION",
    "build_request_body",
    "is_retryable_error",
    "sanitize_headers",
]
