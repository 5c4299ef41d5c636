"""Main Typer application — imports and registers all CLI commands.

Entry point: ``aggon`` (configured via pyproject.toml console_scripts).

Commands: init, plan, test, switch, rollback, generations, store.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from aggon.cli.commands.generations import generations_app
from aggon.cli.commands.init import init_cmd
from aggon.cli.commands.plan import plan_cmd, validate_cmd
from aggon.cli.commands.rollback import rollback_cmd
from aggon.cli.commands.store import store_app
from aggon.cli.commands.switch import switch_cmd
from aggon.cli.context import CliState
from aggon.config import AggonSettings
from aggon.logging_utils import configure_logging

app = typer.Typer(
    name="aggon",
    help="aggon: declarative, content-addressed WoW addon manager.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Declarative configuration file (default: aggon-declarative.json).",
    ),
    profile: Optional[str] = typer.Option(
        None,
        "--profile",
        "-p",
        help="Profile to apply on top of the configuration.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    settings = AggonSettings()
    configure_logging("DEBUG" if verbose else settings.effective_log_level)
    ctx.obj = CliState(
        settings=settings,
        config_path=config or settings.config_path,
        profile=profile,
    )


# Register subcommands
app.command(name="init", help="Create a new declarative configuration.")(init_cmd)
app.command(name="plan", help="Show what changes would be made.")(plan_cmd)
app.command(name="test", help="Validate the configuration without applying it.")(validate_cmd)
app.command(name="switch", help="Apply the configuration.")(switch_cmd)
app.command(name="rollback", help="Roll back to a previous generation.")(rollback_cmd)
app.add_typer(generations_app, name="generations")
app.add_typer(store_app, name="store")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
