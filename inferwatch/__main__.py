"""Inferwatch process entry-point.

Usage:
    python -m inferwatch [--once [--flush]] [--log-level LEVEL] [--log-format FORMAT]

The orchestration logic lives in ``inferwatch.orchestrator``.  This module
calls ``configure_logging()`` first so that every subsequent import already
has a working logger, then hands off to the orchestrator.

Default behaviour (no ``--once``) is continuous: the first cycle runs
immediately, then one cycle every ``SCHEDULE_INTERVAL_SECONDS`` until SIGINT
or SIGTERM.  Pass ``--once`` to execute a single cycle and exit.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from inferwatch.core import configure_logging
from inferwatch.core.exceptions import ConfigError, InferwatchError
from inferwatch.core.settings import Settings


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = argparse.ArgumentParser(
        prog="inferwatch",
        description="Periodic latency and availability monitor for inference providers.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit instead of looping continuously.",
    )
    parser.add_argument(
        "--flush",
        action="store_true",
        help="With --once: upload the buffer after the cycle even if the push interval was not reached.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    args = parser.parse_args()
    if args.flush and not args.once:
        parser.error("--flush requires --once")

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"inferwatch: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)
    logger.info("Inferwatch starting up")

    # Lazy import keeps startup fast when module is imported without running.
    from inferwatch.orchestrator.runner import run_once  # noqa: PLC0415
    from inferwatch.orchestrator.scheduler import run_continuous  # noqa: PLC0415

    try:
        settings = Settings()
    except ValidationError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)

    try:
        if args.once:
            logger.info("Running single cycle (--once mode).")
            asyncio.run(run_once(settings=settings, flush=args.flush))
        else:
            logger.info("Running in continuous mode (Ctrl+C to stop).")
            asyncio.run(run_continuous(settings=settings))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except InferwatchError as exc:
        logger.critical("Startup failed: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
