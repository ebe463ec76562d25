"""Process-wide logging setup for inferwatch.

:func:`configure_logging` is called once by the CLI before anything else
runs.  Modules log through ``logging.getLogger(__name__)`` and attach an
``event`` name from :mod:`inferwatch.core.events` via ``extra=``.

Each record is stamped with the number of the cycle that produced it (see
:data:`CYCLE_ID_CTX`), so interleaved output from concurrent probes can be
grouped back into cycles::

    2026-10-18 09:30:00 INFO     [cycle 4] inferwatch.orchestrator.cycle: Cycle 4 started

``LOG_LEVEL`` and ``LOG_FORMAT`` are consulted when no explicit value is
passed.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from inferwatch.core.models import to_iso

__all__ = ["configure_logging", "JsonFormatter", "CYCLE_ID_CTX", "CycleContextFilter"]

#: Cycle number of the work currently running, as a string.  Fan-out tasks
#: copy the context at creation and therefore inherit it.  ``"-"`` outside a
#: cycle.
CYCLE_ID_CTX: ContextVar[str] = ContextVar("cycle_id", default="-")

LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
FORMATS: tuple[str, ...] = ("text", "json")

_TEXT_LAYOUT = "%(asctime)s %(levelname)-8s [cycle %(cycle_id)s] %(name)s: %(message)s"
_TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Chatty at INFO; only surfaced when the operator asks for DEBUG.
_QUIET_BELOW_DEBUG = ("httpx", "httpcore", "asyncio")

# Attribute names every LogRecord carries; anything else came in via ``extra=``.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.NOTSET, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class CycleContextFilter(logging.Filter):
    """Copy :data:`CYCLE_ID_CTX` onto ``record.cycle_id``; never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.cycle_id = CYCLE_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON line.

    Keys: ``ts`` (UTC, millisecond precision), ``level``, ``logger``,
    ``message`` and ``extra`` (everything passed through ``extra=`` plus
    ``cycle_id``).  ``exc_info`` is added when the record carries a traceback.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        entry: dict[str, Any] = {
            "ts": to_iso(datetime.fromtimestamp(record.created, tz=UTC)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "extra": {
                key: value
                for key, value in vars(record).items()
                if key not in _STANDARD_ATTRS
            },
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            entry["exc_info"] = record.exc_text
        return json.dumps(entry, default=str)


def _pick(value: str | None, env_var: str, default: str, allowed: tuple[str, ...]) -> str:
    chosen = (value or os.environ.get(env_var) or default).strip()
    chosen = chosen.upper() if default.isupper() else chosen.lower()
    if chosen not in allowed:
        raise ValueError(f"{env_var} must be one of {', '.join(allowed)}; got {chosen!r}")
    return chosen


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: One of :data:`LEVELS`; defaults to ``$LOG_LEVEL`` or INFO.
        fmt: ``"text"`` or ``"json"``; defaults to ``$LOG_FORMAT`` or text.
        force: Replace existing root handlers.  Without it an already
            configured root logger only has its level adjusted.

    Raises:
        ValueError: *level* or *fmt* is not recognised.
    """
    resolved_level = _pick(level, "LOG_LEVEL", "INFO", LEVELS)
    resolved_fmt = _pick(fmt, "LOG_FORMAT", "text", FORMATS)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(CycleContextFilter())
    handler.setFormatter(
        JsonFormatter()
        if resolved_fmt == "json"
        else logging.Formatter(_TEXT_LAYOUT, datefmt=_TEXT_DATEFMT)
    )
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)

    quiet_level = logging.NOTSET if resolved_level == "DEBUG" else logging.WARNING
    for name in _QUIET_BELOW_DEBUG:
        logging.getLogger(name).setLevel(quiet_level)
