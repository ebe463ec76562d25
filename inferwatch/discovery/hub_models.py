"""Discover which (model, provider) pairs to probe this cycle.

:class:`HubModelDiscovery` asks the Hub's ``models-json`` listing for the
currently trending text-generation models that are served by at least one
inference provider, keeps the first ``models_to_fetch`` of them, and
flattens every live provider of every kept model into a
:class:`~inferwatch.core.models.WorkItem`.

Response shape (abridged)::

    {
      "models": [
        {
          "id": "meta-llama/Llama-3.3-70B-Instruct",
          "availableInferenceProviders": [
            {"provider": "together", "providerId": "meta-llama/...-Turbo",
             "modelStatus": "live", "providerStatus": "live",
             "task": "conversational"}
          ]
        }
      ],
      "numTotalItems": 1234
    }

Any failure to obtain or parse the listing raises
:class:`~inferwatch.core.exceptions.DiscoveryError`; the cycle orchestrator
treats that as a failed cycle.

Typical usage::

    async with HubModelDiscovery(models_to_fetch=5) as discovery:
        items = await discovery.fetch_work_items()
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Mapping
from types import TracebackType
from typing import Any, Final

import httpx
from pydantic import ValidationError

from inferwatch.core.exceptions import DiscoveryError
from inferwatch.core.models import WorkItem

__all__ = [
    "HubModelDiscovery",
    "LivenessPredicate",
    "default_liveness_predicate",
    "make_liveness_predicate",
]

logger = logging.getLogger(__name__)

#: Decides whether one ``availableInferenceProviders`` entry is probed.
LivenessPredicate = Callable[[Mapping[str, Any]], bool]

_MODELS_PATH: Final[str] = "/models-json"

_MODELS_QUERY: Final[dict[str, str]] = {
    "inference_provider": "all",
    "pipeline_tag": "text-generation",
    "sort": "trending",
    "withCount": "true",
}

_DEFAULT_TIMEOUT: Final[float] = 30.0


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------


def make_liveness_predicate(live_statuses: Collection[str]) -> LivenessPredicate:
    """Build a predicate accepting providers whose statuses are live.

    ``providerStatus`` and ``modelStatus`` are checked independently.  An
    absent (or null) status counts as live; a present one must match one of
    *live_statuses*, case-insensitively.
    """
    accepted = {status.lower() for status in live_statuses}

    def _is_live(entry: Mapping[str, Any]) -> bool:
        for key in ("providerStatus", "modelStatus"):
            status = entry.get(key)
            if status is not None and str(status).lower() not in accepted:
                return False
        return True

    return _is_live


#: Accepts entries whose statuses are absent or ``"live"``.
default_liveness_predicate: Final[LivenessPredicate] = make_liveness_predicate(["live"])


# ---------------------------------------------------------------------------
# Discovery client
# ---------------------------------------------------------------------------


class HubModelDiscovery:
    """Fetch trending models and expand them into work items.

    Args:
        models_to_fetch: How many models from the top of the listing to keep.
        endpoint: Hub base URL.
        is_live: Provider liveness predicate.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject
            :class:`httpx.MockTransport`).

    Raises:
        ValueError: If ``models_to_fetch`` is not positive.
    """

    def __init__(
        self,
        *,
        models_to_fetch: int,
        endpoint: str = "https://huggingface.co",
        is_live: LivenessPredicate = default_liveness_predicate,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if models_to_fetch < 1:
            raise ValueError(f"models_to_fetch must be ≥ 1, got {models_to_fetch!r}.")
        self._models_to_fetch = models_to_fetch
        self._endpoint = endpoint.rstrip("/")
        self._is_live = is_live
        self._timeout = httpx.Timeout(timeout, pool=5.0)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> HubModelDiscovery:
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
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    async def fetch_work_items(self) -> list[WorkItem]:
        """Return this cycle's work items, in listing order.

        Raises:
            DiscoveryError: If the listing cannot be fetched or parsed.
        """
        models = await self._fetch_models()
        selected = models[: self._models_to_fetch]
        logger.info(
            "Fetched %d trending model(s); probing the first %d.",
            len(models),
            len(selected),
        )

        items: list[WorkItem] = []
        for model in selected:
            items.extend(self._expand(model))

        logger.info("Discovery produced %d work item(s).", len(items))
        return items

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._endpoint,
                timeout=self._timeout,
                follow_redirects=True,
                headers={"User-Agent": "inferwatch/0.1", "Accept": "application/json"},
                transport=self._transport,
            )
        return self._http

    async def _fetch_models(self) -> list[Mapping[str, Any]]:
        client = await self._ensure_client()
        try:
            response = await client.get(_MODELS_PATH, params=_MODELS_QUERY)
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"Models listing request failed: {exc!r}") from exc

        if not response.is_success:
            raise DiscoveryError(
                f"Models listing returned HTTP {response.status_code}: "
                f"{response.reason_phrase}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise DiscoveryError("Models listing is not valid JSON.") from exc

        models = payload.get("models") if isinstance(payload, dict) else None
        if not isinstance(models, list):
            raise DiscoveryError("Models listing has no 'models' array.")
        return [model for model in models if isinstance(model, dict)]

    def _expand(self, model: Mapping[str, Any]) -> list[WorkItem]:
        model_id = model.get("id") or model.get("modelId")
        if not model_id:
            logger.warning("Skipping a listed model without an id.")
            return []

        providers = model.get("availableInferenceProviders") or []
        items: list[WorkItem] = []
        for entry in providers:
            if not isinstance(entry, dict) or not self._is_live(entry):
                continue
            try:
                items.append(
                    WorkItem(
                        model_id=model_id,
                        provider_name=entry.get("provider") or entry.get("name") or "",
                        provider_model_id=entry.get("providerId") or "",
                    )
                )
            except ValidationError:
                logger.debug(
                    "Ignoring incomplete provider entry for %s: %r", model_id, entry
                )

        if not items:
            logger.warning("Model %s has no live inference providers.", model_id)
        return items
