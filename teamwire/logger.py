"""Logging setup for the CLI and the isolated worker process."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_CONFIGURED = False


def setup_logger(
    name: str = "teamwire",
    level: str = "INFO",
    console: Optional[Console] = None,
) -> logging.Logger:
    """Attach a single RichHandler to the ``teamwire`` logger tree.

    Modules log through ``logging.getLogger(__name__)``; calling this again
    only adjusts the level.
    """
    global _CONFIGURED
    root = logging.getLogger("teamwire")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not _CONFIGURED:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(handler)
        _CONFIGURED = True
    return logging.getLogger(name)
