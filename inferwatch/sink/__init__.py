"""Remote sink: single-file commits to a Hub dataset repository."""

from inferwatch.sink.hub import HubDatasetSink

__all__ = ["HubDatasetSink"]
