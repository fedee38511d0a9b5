"""Logging configuration for estimkit.

Library modules log through ``logging.getLogger(__name__)``; applications
call :func:`setup_logging` once to route the records somewhere useful.
"""

from __future__ import annotations

import logging
import sys
from typing import IO


def setup_logging(
    level: str = "INFO",
    format_string: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure root logging for estimation runs.

    Args:
        level: Logging level name (``DEBUG``, ``INFO``, ``WARNING``, ...).
        format_string: Custom format string. Defaults to a timestamped
            ``name - level - message`` layout.
        stream: Stream to write records to (default ``sys.stderr``).
    """
    if format_string is None:
        format_string = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"

    if stream is None:
        stream = sys.stderr

    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown logging level '{level}'")

    logging.basicConfig(
        level=numeric_level,
        format=format_string,
        stream=stream,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under ``estimkit``."""
    if name == "estimkit" or name.startswith("estimkit."):
        return logging.getLogger(name)
    return logging.getLogger(f"estimkit.{name}")
