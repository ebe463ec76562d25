"""Inferwatch application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.  The field name is the
**lowercase** version of the env-var name (e.g. ``HF_DATASET_REPO_ID`` →
``hf_dataset_repo_id``).

Typical usage::

    from inferwatch.core.settings import Settings

    settings = Settings()                       # loads from env + .env
    print(settings.schedule_interval_seconds)   # 1800
    print(settings.hub_configured)              # True / False
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

__all__ = ["Settings"]


def _csv_to_list(value: str) -> list[str]:
    """Split a comma-separated string into a list of non-empty, stripped items."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    Credentials default to empty strings so the object can always be built
    (tests, ``--help``); :func:`~inferwatch.orchestrator.runner.open_orchestrator`
    refuses to start when they are missing.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    hf_token: str = Field(
        default="",
        description="Bearer token sent to every inference provider endpoint.",
    )
    hf_hub_token: str = Field(
        default="",
        description="Token used for dataset uploads to the Hub.",
    )

    # ------------------------------------------------------------------
    # Remote destination
    # ------------------------------------------------------------------
    hf_endpoint: str = Field(
        default="https://huggingface.co",
        description="Hub base URL used for model discovery and uploads.",
    )
    hf_dataset_repo_id: str = Field(
        default="",
        description="Dataset repository receiving the flushed buffer.",
    )
    hf_dataset_target_filename: str = Field(
        default="metrics.csv",
        min_length=1,
        description="File path inside the dataset repository.",
    )
    hf_dataset_revision: str = Field(
        default="main",
        min_length=1,
        description="Branch the upload commits are made on.",
    )

    # ------------------------------------------------------------------
    # Cadence
    # ------------------------------------------------------------------
    schedule_interval_seconds: int = Field(
        default=1800,
        gt=0,
        description="Seconds between timer ticks.",
    )
    push_interval_cycles: int = Field(
        default=6,
        gt=0,
        description="Flush the buffer every N accepted cycles.",
    )
    shutdown_grace_seconds: float = Field(
        default=120.0,
        gt=0,
        description="How long a running cycle may take to finish after a stop signal.",
    )

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------
    models_to_fetch: int = Field(
        default=5,
        gt=0,
        description="Number of trending models probed per cycle.",
    )
    max_tokens_default: int = Field(
        default=4096,
        gt=0,
        description="max_tokens sent in every probe request.",
    )
    provider_endpoint_mapping_path: str = Field(
        default="./provider_mapping.json",
        description="JSON file mapping lowercase provider names to request URLs.",
    )
    provider_live_statuses: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["live"],
        description="Statuses treated as live by discovery (comma-separated in env).",
    )
    request_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Per-attempt HTTP timeout for provider probes.",
    )
    call_max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries after the first probe attempt.",
    )
    call_initial_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Backoff before the first retry; doubles on each retry.",
    )
    retry_max_delay_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Ceiling on a single backoff delay.",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    local_csv_path: str = Field(
        default="./metrics_buffer.csv",
        description="Path to the local CSV buffer.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("provider_live_statuses", mode="before")
    @classmethod
    def _parse_csv_statuses(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string **or** an already-parsed list."""
        if isinstance(v, str):
            v = _csv_to_list(v)
        return [status.lower() for status in v]

    @field_validator("hf_endpoint")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def local_csv_path_resolved(self) -> Path:
        """Return the buffer path as a resolved :class:`~pathlib.Path`."""
        return Path(self.local_csv_path).resolve()

    @property
    def inference_configured(self) -> bool:
        """``True`` if the provider bearer token is set."""
        return bool(self.hf_token)

    @property
    def hub_configured(self) -> bool:
        """``True`` if both the upload token and the dataset repo id are set."""
        return bool(self.hf_hub_token and self.hf_dataset_repo_id)
