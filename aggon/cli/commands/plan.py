"""``aggon plan`` and ``aggon test`` — preview changes without applying them."""

from __future__ import annotations

import typer

from aggon.cli.context import console, fail, open_engine
from aggon.cli.render import plan_summary, plan_table
from aggon.core.errors import AggonError


def plan_cmd(
    ctx: typer.Context,
    update: bool = typer.Option(
        False,
        "--update",
        "-u",
        help="Re-fetch addons that are not pinned to a content hash.",
    ),
) -> None:
    """Show what a switch would change."""
    with open_engine(ctx) as engine:
        try:
            plan = engine.plan(refresh=update or None)
        except AggonError as exc:
            fail(str(exc))

    if not plan.operations:
        console.print("[dim]No installations or addons configured.[/dim]")
        return
    console.print(plan_table(plan))
    console.print(plan_summary(plan))
    if not plan.has_changes:
        console.print("[green]Already up to date.[/green]")


def validate_cmd(ctx: typer.Context) -> None:
    """Validate the configuration and check that it can be planned.

    Exits non-zero on an invalid file, an unknown profile, an undeclared
    addon or an incompatible addon. Nothing is fetched or linked.
    """
    with open_engine(ctx) as engine:
        try:
            plan = engine.plan()
        except AggonError as exc:
            fail(str(exc))
        config = engine.config

    console.print(
        f"[bold green]Configuration valid:[/bold green] "
        f"{len(config.installations)} installation(s), {len(config.addons)} addon(s), "
        f"{len(config.profiles)} profile(s)"
    )
    console.print(plan_summary(plan))
