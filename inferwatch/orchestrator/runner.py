"""Orchestrator assembly: wire every component for a process lifetime.

:func:`open_orchestrator` is an async context manager that validates the
configuration, builds each collaborator, and yields a ready
:class:`~inferwatch.orchestrator.cycle.CycleOrchestrator`.  The scheduler
keeps it open for the whole process; :func:`run_once` opens it for a
single cycle.

Component wiring
----------------
1. Check credentials: ``HF_TOKEN``, ``HF_HUB_TOKEN`` and
   ``HF_DATASET_REPO_ID`` must be set, or
   :exc:`~inferwatch.core.exceptions.ConfigError` is raised before any
   network I/O.
2. Load the provider endpoint mapping from
   ``PROVIDER_ENDPOINT_MAPPING_PATH``.
3. Create the :class:`~inferwatch.storage.buffer.BufferStore` and make sure
   the buffer file has its header.
4. Enter the HTTP-owning components via :class:`contextlib.AsyncExitStack`:
   :class:`~inferwatch.discovery.hub_models.HubModelDiscovery`,
   :class:`~inferwatch.probing.caller.ProviderCaller` and
   :class:`~inferwatch.sink.hub.HubDatasetSink`.
5. Tear everything down in reverse order on exit, including on exceptions.

Typical usage::

    import asyncio
    from inferwatch.orchestrator.runner import run_once

    report = asyncio.run(run_once(flush=True))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

from inferwatch.core.exceptions import ConfigError
from inferwatch.core.settings import Settings
from inferwatch.discovery.hub_models import HubModelDiscovery, make_liveness_predicate
from inferwatch.orchestrator.cycle import CycleOrchestrator, CycleReport
from inferwatch.orchestrator.flush import FlushCoordinator
from inferwatch.orchestrator.pipeline import FanOutRunner
from inferwatch.probing.caller import ProviderCaller
from inferwatch.probing.endpoints import EndpointMapping, load_endpoint_mapping
from inferwatch.probing.retry import RetryExecutor
from inferwatch.sink.hub import HubDatasetSink
from inferwatch.storage.buffer import BufferStore

__all__ = ["check_config", "open_orchestrator", "run_once"]

logger = logging.getLogger(__name__)


def check_config(settings: Settings) -> None:
    """Raise :exc:`ConfigError` listing every missing required setting."""
    missing: list[str] = []
    if not settings.hf_token:
        missing.append("HF_TOKEN")
    if not settings.hf_hub_token:
        missing.append("HF_HUB_TOKEN")
    if not settings.hf_dataset_repo_id:
        missing.append("HF_DATASET_REPO_ID")
    if missing:
        raise ConfigError(
            f"Missing required configuration: {', '.join(missing)}. "
            "Set them in .env (or env vars)."
        )


@asynccontextmanager
async def open_orchestrator(settings: Settings) -> AsyncIterator[CycleOrchestrator]:
    """Build the full runtime and yield its :class:`CycleOrchestrator`.

    Args:
        settings: Loaded application settings.

    Yields:
        A ready orchestrator.  HTTP sessions stay open until the context
        exits.

    Raises:
        ConfigError: If required credentials are missing.
        StorageError: If the buffer file cannot be prepared.
    """
    check_config(settings)

    endpoints = EndpointMapping(load_endpoint_mapping(settings.provider_endpoint_mapping_path))
    if not len(endpoints):
        logger.warning("No provider endpoints are mapped; every probe will be skipped.")

    buffer = BufferStore(settings.local_csv_path_resolved)
    await asyncio.to_thread(buffer.ensure_shape)

    logger.info(
        "Assembling orchestrator: buffer=%s dataset=%s/%s push_every=%d cycle(s)",
        buffer.path,
        settings.hf_dataset_repo_id,
        settings.hf_dataset_target_filename,
        settings.push_interval_cycles,
    )

    async with AsyncExitStack() as stack:
        discovery = await stack.enter_async_context(
            HubModelDiscovery(
                models_to_fetch=settings.models_to_fetch,
                endpoint=settings.hf_endpoint,
                is_live=make_liveness_predicate(settings.provider_live_statuses),
            )
        )
        caller = await stack.enter_async_context(
            ProviderCaller(
                endpoints=endpoints,
                token=settings.hf_token,
                max_tokens=settings.max_tokens_default,
                retry=RetryExecutor(max_delay=settings.retry_max_delay_seconds),
                max_retries=settings.call_max_retries,
                initial_delay=settings.call_initial_delay_seconds,
                timeout=settings.request_timeout_seconds,
            )
        )
        sink = await stack.enter_async_context(
            HubDatasetSink(
                token=settings.hf_hub_token,
                repo_id=settings.hf_dataset_repo_id,
                endpoint=settings.hf_endpoint,
                revision=settings.hf_dataset_revision,
            )
        )

        yield CycleOrchestrator(
            discovery=discovery,
            fanout=FanOutRunner(caller),
            buffer=buffer,
            flusher=FlushCoordinator(buffer, sink, settings.hf_dataset_target_filename),
            push_interval_cycles=settings.push_interval_cycles,
        )


async def run_once(
    settings: Settings | None = None,
    *,
    flush: bool = False,
) -> CycleReport | None:
    """Execute a single cycle, optionally flushing the buffer afterwards.

    Args:
        settings: Pre-loaded settings.  Loaded from the environment and
            ``.env`` when ``None``.
        flush: Upload the buffer after the cycle even if the push interval
            was not reached.

    Returns:
        The cycle's :class:`CycleReport`.

    Raises:
        ConfigError: If required credentials are missing.
    """
    if settings is None:
        settings = Settings()

    async with open_orchestrator(settings) as orchestrator:
        report = await orchestrator.tick()
        if flush and report is not None and not report.flush_attempted:
            logger.info("Flushing buffer on request (--flush).")
            report.flush_attempted = True
            report.flushed = await orchestrator.shutdown()
        return report
