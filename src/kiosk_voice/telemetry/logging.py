"""Logging setup shared by the relay server and the kiosk CLI."""

from __future__ import annotations

import logging

from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """Route ``kiosk_voice`` loggers through a rich console handler."""
    root = logging.getLogger()
    if not any(isinstance(handler, RichHandler) for handler in root.handlers):
        root.addHandler(RichHandler(rich_tracebacks=True, show_path=False))
    root.setLevel(level.upper())

    logging.getLogger("httpx").setLevel(logging.WARNING)
