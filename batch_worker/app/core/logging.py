"""Loguru sink setup for the worker process."""
from __future__ import annotations

import sys

from loguru import logger


def configure_logging(level: str = "INFO", *, serialize: bool = False) -> None:
    """Replace the default loguru sink with a single stderr sink.

    With serialize=True each record is emitted as one JSON line, which keeps
    the bound event fields (service_name, event, ...) machine readable.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        serialize=serialize,
        backtrace=False,
        diagnose=False,
    )
