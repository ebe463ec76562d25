"""Provider name → request URL mapping.

The mapping is a flat JSON object stored on disk, for example::

    {
        "together": "https://router.huggingface.co/together/v1/chat/completions",
        "fireworks-ai": "https://router.huggingface.co/fireworks-ai/inference/v1/chat/completions"
    }

Keys are matched case-insensitively.  A provider without an entry is not an
error: its work items are skipped and a warning is logged once per provider
for the lifetime of the :class:`EndpointMapping`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path

from inferwatch.core import events

__all__ = ["EndpointMapping", "load_endpoint_mapping"]

logger = logging.getLogger(__name__)


def load_endpoint_mapping(path: str | Path) -> dict[str, str]:
    """Read the provider mapping file.

    A missing file yields an empty mapping with a warning; an unreadable or
    malformed file yields an empty mapping with an error.  Neither stops the
    process, since every probe is then simply skipped.

    Args:
        path: Location of the JSON mapping file.

    Returns:
        Mapping of lower-cased provider name to request URL.
    """
    mapping_path = Path(path).resolve()
    if not mapping_path.exists():
        logger.warning(
            "Provider mapping file not found at %s. Using empty mapping.", mapping_path
        )
        return {}

    try:
        raw = json.loads(mapping_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.error("Error loading provider mapping from %s.", mapping_path, exc_info=True)
        return {}

    if not isinstance(raw, dict):
        logger.error(
            "Provider mapping in %s must be a JSON object, got %s.",
            mapping_path,
            type(raw).__name__,
        )
        return {}

    mapping = {
        str(name).lower(): str(url)
        for name, url in raw.items()
        if isinstance(url, str) and url.strip()
    }
    logger.info("Loaded %d provider endpoint(s) from %s.", len(mapping), mapping_path)
    return mapping


class EndpointMapping:
    """Case-insensitive lookup of provider request URLs.

    Args:
        endpoints: Provider name → URL pairs.  Names are lower-cased.
    """

    def __init__(self, endpoints: Mapping[str, str]) -> None:
        self._endpoints = {name.lower(): url for name, url in endpoints.items()}
        self._warned: set[str] = set()

    def __len__(self) -> int:
        return len(self._endpoints)

    def resolve(self, provider_name: str) -> str | None:
        """Return the request URL for *provider_name*, or ``None`` if unmapped."""
        key = provider_name.lower()
        url = self._endpoints.get(key)
        if url is None and key not in self._warned:
            self._warned.add(key)
            logger.warning(
                "No API endpoint mapping found for provider: %s",
                provider_name,
                extra={"event": events.PROBE_SKIPPED, "provider": provider_name},
            )
        return url
