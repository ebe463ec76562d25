"""Model and provider discovery against the Hub listing API."""

from inferwatch.discovery.hub_models import (
    HubModelDiscovery,
    LivenessPredicate,
    default_liveness_predicate,
    make_liveness_predicate,
)

__all__ = [
    "HubModelDiscovery",
    "LivenessPredicate",
    "default_liveness_predicate",
    "make_liveness_predicate",
]
