"""Live integration tests for Hub discovery and provider probing.

These tests talk to the **real** Hugging Face endpoints.  They check that:

* The ``models-json`` listing still accepts our query and still carries the
  ``availableInferenceProviders`` shape discovery depends on.
* A probe against the router produces a well-formed outcome row.

Default behaviour
-----------------
Every test here is marked ``@pytest.mark.integration`` and is excluded from
the default run (``addopts = "-m 'not integration'"`` in
``pyproject.toml``).  Run them on demand with::

    pytest -m integration tests/integration/test_hub_live.py

Credential guards
-----------------
* Discovery needs no credentials.
* The probe test is **skipped** when ``HF_TOKEN`` is absent.

Values are read from the local ``.env`` file at import time.  Nothing is
ever uploaded to a dataset repository from this module.
"""

from __future__ import annotations

import logging
import os

import pytest
from dotenv import load_dotenv

from inferwatch.core.models import BUFFER_COLUMNS, to_iso, utc_now
from inferwatch.core.settings import Settings
from inferwatch.discovery.hub_models import HubModelDiscovery
from inferwatch.probing.caller import ProviderCaller
from inferwatch.probing.endpoints import EndpointMapping, load_endpoint_mapping
from inferwatch.probing.retry import RetryExecutor

__all__: list[str] = []

logger = logging.getLogger(__name__)

load_dotenv()

_skip_if_no_token = pytest.mark.skipif(
    not os.environ.get("HF_TOKEN"),
    reason="HF_TOKEN is not set; skipping the live probe test. Add it to .env to run it.",
)


@pytest.fixture()
def live_settings() -> Settings:
    return Settings().model_copy(update={"models_to_fetch": 2})


@pytest.mark.integration
class TestDiscoveryLive:
    @pytest.mark.asyncio
    async def test_listing_yields_work_items(self, live_settings: Settings) -> None:
        async with HubModelDiscovery(
            models_to_fetch=live_settings.models_to_fetch,
            endpoint=live_settings.hf_endpoint,
        ) as discovery:
            items = await discovery.fetch_work_items()

        logger.info("Live discovery returned %d work item(s).", len(items))
        assert len({item.model_id for item in items}) <= live_settings.models_to_fetch
        for item in items:
            assert item.model_id and item.provider_name and item.provider_model_id


@pytest.mark.integration
class TestProbeLive:
    @_skip_if_no_token
    @pytest.mark.asyncio
    async def test_probe_first_mapped_item(self, live_settings: Settings) -> None:
        endpoints = EndpointMapping(
            load_endpoint_mapping(live_settings.provider_endpoint_mapping_path)
        )
        async with HubModelDiscovery(
            models_to_fetch=live_settings.models_to_fetch,
            endpoint=live_settings.hf_endpoint,
        ) as discovery:
            items = await discovery.fetch_work_items()

        mapped = [item for item in items if endpoints.resolve(item.provider_name)]
        if not mapped:
            pytest.skip("No discovered provider has an endpoint mapping.")

        async with ProviderCaller(
            endpoints=endpoints,
            token=live_settings.hf_token,
            max_tokens=64,
            retry=RetryExecutor(),
            max_retries=0,
        ) as caller:
            outcome = await caller.call(mapped[0], to_iso(utc_now()))

        assert outcome is not None
        assert len(outcome.to_row()) == len(BUFFER_COLUMNS)
        assert live_settings.hf_token not in outcome.request_headers_sanitized
        logger.info(
            "Probe %s via %s: HTTP %d in %d ms",
            outcome.model_id,
            outcome.provider_name,
            outcome.response_status_code,
            outcome.duration_ms,
        )
