"""``aggon init`` — create a starter declarative configuration.

Writes ``aggon-declarative.json`` (or the ``--config`` path) with empty
installations and addons, then lays out the store and generations
directories next to it.
"""

from __future__ import annotations

import typer
from rich.panel import Panel

from aggon.cli.context import console, fail, state_from
from aggon.core.engine import Engine
from aggon.core.errors import AggonError
from aggon.models.config import ConfigMetadata, DeclarativeConfig, save_config


def init_cmd(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite an existing configuration file.",
    ),
) -> None:
    """Create a new declarative configuration."""
    state = state_from(ctx)
    path = state.config_path
    if path.exists() and not force:
        fail(f"{path} already exists (use --force to overwrite)")

    config = DeclarativeConfig(
        metadata=ConfigMetadata(description="Declarative WoW addon configuration"),
    )
    try:
        save_config(path, config)
        with Engine(config, settings=state.settings, base_dir=path.parent) as engine:
            engine.initialize()
    except (AggonError, OSError) as exc:
        fail(f"Failed to create configuration: {exc}")

    console.print(
        Panel(
            "\n".join([
                f"[bold green]Created {path}[/bold green]",
                "",
                "Edit this file to define your installations and addons, then run:",
                "",
                "  [bold]aggon plan[/bold]     to preview the changes",
                "  [bold]aggon switch[/bold]   to apply them",
            ]),
            title="[bold]aggon[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
