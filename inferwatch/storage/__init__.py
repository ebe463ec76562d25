"""Local append-only CSV buffer for probe outcomes."""

from inferwatch.storage.buffer import HEADER_LINE, BufferStore

__all__ = ["BufferStore", "HEADER_LINE"]
