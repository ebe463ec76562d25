"""Append-only CSV buffer for probe outcomes.

:class:`BufferStore` is the only code that touches the buffer file.  The file
is plain CSV:

* The first line is always the canonical header, :data:`HEADER_LINE`, written
  unquoted in :data:`~inferwatch.core.models.BUFFER_COLUMNS` order.
* Each data row holds one :class:`~inferwatch.core.models.CallOutcome`.
  ``duration_ms`` and ``response_status_code`` are unquoted integers; every
  other field is a quoted string (``csv.QUOTE_NONNUMERIC``).
* Rows are only ever appended.  The single way to remove rows is
  :meth:`BufferStore.clear`, which leaves the header alone in the file.

If the first line is ever found not to be the header, the old file is moved
aside to ``<buffer>.corrupt-<UTC stamp>`` and a fresh header-only buffer
takes its place, so unrecognised content is kept for inspection rather than
overwritten.

A last record left incomplete by a crash mid-append (no line terminator, or
an unclosed quoted field) is cut off the same way into
``<buffer>.torn-<UTC stamp>`` before the next append or read.

The store is synchronous; async callers wrap it with
:func:`asyncio.to_thread`.  It does no locking of its own: the cycle
orchestrator guarantees a single writer.

Typical usage::

    store = BufferStore("./metrics_buffer.csv")
    store.append(outcomes)
    content = store.read_all()       # None when there is nothing to flush
    if content is not None and upload(content):
        store.clear()
"""

from __future__ import annotations

import csv
import io
import logging
import os
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Final

from inferwatch.core import events
from inferwatch.core.exceptions import BufferClearError, StorageError
from inferwatch.core.models import BUFFER_COLUMNS, CallOutcome, utc_now

__all__ = ["BufferStore", "HEADER_LINE"]

logger = logging.getLogger(__name__)

#: The canonical first line of the buffer file (without line terminator).
HEADER_LINE: Final[str] = ",".join(BUFFER_COLUMNS)

_LINE_TERMINATOR: Final[str] = "\n"


class BufferStore:
    """Owns the local CSV buffer file.

    Args:
        path: Buffer file location.  Parent directories are created on the
            first write.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    def ensure_shape(self) -> None:
        """Make sure the file exists and starts with :data:`HEADER_LINE`.

        Idempotent: a file that starts with the header and ends in a
        complete record is left untouched.  An incomplete last record is cut
        off first (see :meth:`_drop_torn_tail`).

        Raises:
            StorageError: If the file cannot be inspected or rewritten.
        """
        try:
            first_line = self._read_first_line()
            if first_line == HEADER_LINE:
                self._drop_torn_tail()
                return

            if first_line is not None and self._path.stat().st_size > 0:
                quarantine = self._quarantine_path("corrupt")
                os.replace(self._path, quarantine)
                logger.warning(
                    "Buffer %s had an unrecognised header; moved it to %s and "
                    "started a fresh buffer.",
                    self._path,
                    quarantine,
                    extra={"event": events.BUFFER_HEADER_REPAIRED},
                )

            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8", newline="") as fh:
                fh.write(HEADER_LINE + _LINE_TERMINATOR)
            logger.debug("Wrote buffer header to %s.", self._path)
        except OSError as exc:
            raise StorageError(f"Cannot prepare buffer {self._path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Append / read / clear
    # ------------------------------------------------------------------

    def append(self, outcomes: Sequence[CallOutcome]) -> int:
        """Append *outcomes* as rows and return how many were written.

        An empty sequence is a no-op and does not even touch the file.

        Raises:
            StorageError: If the rows cannot be written.
        """
        if not outcomes:
            return 0

        self.ensure_shape()
        try:
            with open(self._path, "a", encoding="utf-8", newline="") as fh:
                writer = csv.writer(
                    fh,
                    quoting=csv.QUOTE_NONNUMERIC,
                    lineterminator=_LINE_TERMINATOR,
                )
                writer.writerows(outcome.to_row() for outcome in outcomes)
        except OSError as exc:
            raise StorageError(f"Cannot append to buffer {self._path}: {exc}") from exc

        logger.info(
            "Appended %d row(s) to %s.",
            len(outcomes),
            self._path,
            extra={"event": events.BUFFER_APPENDED, "rows": len(outcomes)},
        )
        return len(outcomes)

    def read_all(self) -> str | None:
        """Return the whole buffer, or ``None`` when there is nothing to flush.

        ``None`` covers a missing or unreadable file as well as one holding
        only the header.  The file is brought into shape first (see
        :meth:`ensure_shape`), so what is returned always starts with
        :data:`HEADER_LINE` and ends with a complete record.
        """
        if not self._path.exists():
            return None
        try:
            self.ensure_shape()
        except StorageError:
            logger.warning("Could not prepare buffer %s for reading.", self._path, exc_info=True)
            return None
        try:
            with open(self._path, encoding="utf-8", newline="") as fh:
                content = fh.read()
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not read buffer %s.", self._path, exc_info=True)
            return None

        _, _, rows = content.partition(_LINE_TERMINATOR)
        if not rows.strip():
            return None
        return content

    def clear(self) -> None:
        """Reset the buffer to the header line alone.

        The header is written to a sibling temp file which then atomically
        replaces the buffer, so a crash leaves either the old or the new file.

        Raises:
            BufferClearError: If the buffer cannot be reset.  Callers must
                not swallow this.
        """
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8", newline="") as fh:
                fh.write(HEADER_LINE + _LINE_TERMINATOR)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise BufferClearError(str(self._path), str(exc)) from exc
        logger.info("Buffer %s cleared.", self._path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_first_line(self) -> str | None:
        """First line without its terminator, or ``None`` if the file is absent."""
        if not self._path.exists():
            return None
        with open(self._path, encoding="utf-8", errors="replace", newline="") as fh:
            return fh.readline().rstrip("\r\n")

    def _quarantine_path(self, kind: str) -> Path:
        """Unused sibling path ``<buffer>.<kind>-<UTC stamp>[-n]``."""
        stamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        candidate = self._path.with_name(f"{self._path.name}.{kind}-{stamp}")
        n = 1
        while candidate.exists():
            candidate = self._path.with_name(f"{self._path.name}.{kind}-{stamp}-{n}")
            n += 1
        return candidate

    def _drop_torn_tail(self) -> None:
        """Cut an unterminated last record off the buffer.

        A crash or a full disk mid-append can leave a partial row with no
        line terminator, or with a quoted field that never closes.  That
        fragment is moved to ``<buffer>.torn-<stamp>`` and the buffer is
        rewritten to end at the last complete record, so the next append
        starts on a fresh line.  Malformed records in the middle of the file
        are left alone.
        """
        # surrogateescape keeps undecodable bytes so the rewrite is lossless.
        with open(self._path, encoding="utf-8", errors="surrogateescape", newline="") as fh:
            content = fh.read()
        if not content:
            return

        consumed = 0
        good_end = 0

        def _lines() -> Iterator[str]:
            nonlocal consumed
            for line in io.StringIO(content, newline=""):
                consumed += len(line)
                yield line

        try:
            for _record in csv.reader(_lines(), strict=True):
                if content[consumed - 1] == "\n":
                    good_end = consumed
        except csv.Error:
            if consumed < len(content):
                return
        else:
            if content.endswith("\n"):
                return

        if good_end == 0:
            # Only the header is there, missing its terminator.
            kept, fragment = HEADER_LINE + _LINE_TERMINATOR, content[len(HEADER_LINE):]
        else:
            kept, fragment = content[:good_end], content[good_end:]

        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8", errors="surrogateescape", newline="") as fh:
            fh.write(kept)
        if not fragment:
            os.replace(tmp_path, self._path)
            return

        quarantine = self._quarantine_path("torn")
        with open(quarantine, "w", encoding="utf-8", errors="surrogateescape", newline="") as fh:
            fh.write(fragment)
        os.replace(tmp_path, self._path)
        logger.warning(
            "Buffer %s ended in an incomplete record (%d chars); moved it to %s.",
            self._path,
            len(fragment),
            quarantine,
            extra={"event": events.BUFFER_TAIL_REPAIRED},
        )
