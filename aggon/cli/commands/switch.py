"""``aggon switch`` — converge installations to the configuration.

Plans, downloads, links and records a new generation. The generation is
only made current if every step succeeded; Ctrl+C stops the apply
between operations and leaves the previous generation current.
"""

from __future__ import annotations

import signal
import threading

import typer

from aggon.cli.context import console, fail, open_engine
from aggon.cli.render import result_panel
from aggon.core.errors import AggonError


def switch_cmd(
    ctx: typer.Context,
    update: bool = typer.Option(
        False,
        "--update",
        "-u",
        help="Re-fetch addons that are not pinned to a content hash.",
    ),
    description: str = typer.Option(
        "",
        "--description",
        "-d",
        help="Description recorded on the new generation.",
    ),
) -> None:
    """Apply the configuration and make it the current generation."""
    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        with open_engine(ctx) as engine:
            try:
                result = engine.switch(
                    description=description,
                    refresh=update or None,
                    cancel_event=cancel,
                )
            except AggonError as exc:
                fail(str(exc))
    finally:
        signal.signal(signal.SIGINT, previous)

    console.print(result_panel(result))
    if not result.success:
        raise typer.Exit(code=1)
