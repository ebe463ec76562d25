"""Buffer → remote sink flush with clear-only-on-success semantics.

:meth:`FlushCoordinator.flush` runs three steps:

1. Read the whole buffer.  Nothing to flush (missing file or header only)
   returns ``False`` without contacting the sink.
2. Upload the content to the sink under the configured destination name,
   with a commit message carrying the current timestamp.
3. Only after the sink confirms the upload, reset the buffer to header-only.

A sink failure of any kind leaves the buffer byte-for-byte as it was and
returns ``False``; the next flush retries the same rows.  A failure to clear
*after* a confirmed upload raises
:class:`~inferwatch.core.exceptions.BufferClearError` to the caller, because
local and remote state now disagree and the next flush will upload those
rows again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from inferwatch.core import events
from inferwatch.core.models import to_iso, utc_now
from inferwatch.storage.buffer import BufferStore

__all__ = ["FlushCoordinator", "RemoteSink", "commit_message", "commit_description"]

logger = logging.getLogger(__name__)


class RemoteSink(Protocol):
    """Destination accepting one named blob per upload."""

    async def upload(
        self,
        path_in_repo: str,
        content: bytes,
        commit_message: str,
        commit_description: str = "",
    ) -> str | None: ...  # pragma: no cover


def commit_message(timestamp: str) -> str:
    return f"Automated metrics upload {timestamp}"


def commit_description(timestamp: str) -> str:
    return f"Upload metrics data collected up to {timestamp}."


class FlushCoordinator:
    """Push the buffer to the remote sink and clear it on confirmed success.

    Args:
        buffer: The local buffer.
        sink: Remote destination.
        destination: Name of the file in the remote store.
        clock: Source of the commit timestamp.
    """

    def __init__(
        self,
        buffer: BufferStore,
        sink: RemoteSink,
        destination: str,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._buffer = buffer
        self._sink = sink
        self._destination = destination
        self._clock = clock

    async def flush(self) -> bool:
        """Upload and clear the buffer.

        Returns:
            ``True`` if content was uploaded and the buffer cleared,
            ``False`` if there was nothing to upload or the upload failed.

        Raises:
            BufferClearError: If the buffer could not be cleared after a
                successful upload.
        """
        content = await asyncio.to_thread(self._buffer.read_all)
        if content is None:
            logger.info(
                "Buffer is empty; nothing to upload.",
                extra={"event": events.FLUSH_EMPTY},
            )
            return False

        timestamp = to_iso(self._clock())
        payload = content.encode("utf-8")
        logger.info(
            "Uploading %d bytes from %s to %s.",
            len(payload),
            self._buffer.path,
            self._destination,
            extra={"event": events.FLUSH_START, "bytes": len(payload)},
        )

        try:
            commit_url = await self._sink.upload(
                self._destination,
                payload,
                commit_message(timestamp),
                commit_description(timestamp),
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Upload to %s failed; buffer kept for the next flush: %s",
                self._destination,
                exc,
                exc_info=True,
                extra={"event": events.FLUSH_FAILED},
            )
            return False

        await asyncio.to_thread(self._buffer.clear)
        logger.info(
            "Upload confirmed%s; buffer cleared.",
            f" ({commit_url})" if commit_url else "",
            extra={"event": events.FLUSH_OK},
        )
        return True
