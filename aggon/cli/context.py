"""Shared state passed from the top-level callback to every command."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console

from aggon.config import AggonSettings
from aggon.core.engine import Engine
from aggon.core.errors import AggonError

console = Console()


@dataclass
class CliState:
    settings: AggonSettings
    config_path: Path
    profile: str | None = None


def state_from(ctx: typer.Context) -> CliState:
    state = ctx.find_object(CliState)
    if state is None:
        settings = AggonSettings()
        state = CliState(settings=settings, config_path=settings.config_path)
    return state


def open_engine(ctx: typer.Context) -> Engine:
    """Build an engine from the CLI options, exiting with 1 on bad config."""
    state = state_from(ctx)
    try:
        return Engine.from_file(
            state.config_path, profile=state.profile, settings=state.settings
        )
    except AggonError as exc:
        fail(str(exc))


def fail(message: str, code: int = 1) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(code=code)
