from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_CONFIGURED_ATTR = "_aggon_configured"


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Attach a Rich handler to the root logger.

    Safe to call more than once; later calls only adjust the level.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    if getattr(root, _CONFIGURED_ATTR, False):
        return

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    setattr(root, _CONFIGURED_ATTR, True)

    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger(__name__).debug("Logging initialized at %s", level.upper())
