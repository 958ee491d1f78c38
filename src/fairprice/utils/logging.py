"""Logging helpers for CLI diagnostics."""
from __future__ import annotations

import logging
from typing import Optional

from rich.logging import RichHandler

_LOGGER_CONFIGURED = False


def configure_logging(debug: bool = False, *, level: Optional[int] = None) -> None:
    """Route engine logs through Rich; DEBUG traces every intermediate aggregate."""
    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED:
        return

    resolved_level = level or (logging.DEBUG if debug else logging.INFO)
    logging.basicConfig(
        level=logging.WARNING,
        format="%(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(show_path=False, rich_tracebacks=True)],
    )
    # Third-party libraries stay at WARNING; only the engine gets verbose.
    logging.getLogger("fairprice").setLevel(resolved_level)
    _LOGGER_CONFIGURED = True
