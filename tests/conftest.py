"""Shared pytest fixtures and configuration for the Inferwatch test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Any

import pytest
from pydantic_settings import SettingsConfigDict

from inferwatch.core import configure_logging
from inferwatch.core.models import CallOutcome, WorkItem
from inferwatch.core.settings import Settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Inferwatch-related env vars for the duration of a test.

    Also disables pydantic-settings ``.env`` file loading so that values in a
    local ``.env`` file do not leak into Settings isolation tests.
    """
    prefixes = (
        "HF_",
        "SCHEDULE_",
        "MODELS_",
        "MAX_TOKENS_",
        "PUSH_",
        "PROVIDER_",
        "LOCAL_CSV_",
        "REQUEST_TIMEOUT_",
        "CALL_",
        "RETRY_",
        "LOG_LEVEL",
        "LOG_FORMAT",
        "INFERWATCH_",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Domain factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_item() -> Callable[..., WorkItem]:
    """Factory for :class:`WorkItem` with sensible defaults."""

    def _make(
        provider: str = "together",
        model_id: str = "meta-llama/Llama-3.3-70B-Instruct",
        provider_model_id: str | None = None,
    ) -> WorkItem:
        return WorkItem(
            model_id=model_id,
            provider_name=provider,
            provider_model_id=provider_model_id or f"{model_id}-{provider}",
        )

    return _make


@pytest.fixture()
def make_outcome() -> Callable[..., CallOutcome]:
    """Factory for :class:`CallOutcome`; keyword arguments override fields."""

    def _make(**overrides: Any) -> CallOutcome:
        fields: dict[str, Any] = {
            "cycle_timestamp_iso": "2026-10-18T09:30:00.000Z",
            "model_id": "meta-llama/Llama-3.3-70B-Instruct",
            "provider_name": "together",
            "provider_model_id": "meta-llama/Llama-3.3-70B-Instruct-Turbo",
            "request_url": "https://router.example/together/v1/chat/completions",
            "request_body": '{"stream":false}',
            "request_headers_sanitized": '{"Authorization": "Bearer [MASKED]"}',
            "request_start_iso": "2026-10-18T09:30:00.010Z",
            "response_end_iso": "2026-10-18T09:30:00.810Z",
            "duration_ms": 800,
            "response_status_code": 200,
            "response_body_raw": '{"choices": []}',
            "response_headers_sanitized": "{}",
            "error_message": "",
        }
        fields.update(overrides)
        return CallOutcome(**fields)

    return _make


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` named ``tests``."""
    return logging.getLogger("tests")
