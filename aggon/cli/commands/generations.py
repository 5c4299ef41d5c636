"""``aggon generations`` — inspect and prune recorded generations."""

from __future__ import annotations

from typing import Optional

import typer

from aggon.cli.context import console, fail, open_engine
from aggon.cli.render import generations_table
from aggon.core.errors import AggonError

generations_app = typer.Typer(
    help="List, delete and garbage-collect generations.",
    no_args_is_help=True,
)


@generations_app.command(name="list", help="List all generations.")
def list_cmd(ctx: typer.Context) -> None:
    with open_engine(ctx) as engine:
        generations = engine.generations.list()
        states = {g.id: engine.generations.state_of(g.id) for g in generations}

    if not generations:
        console.print("[dim]No generations yet. Run 'aggon switch' first.[/dim]")
        return
    console.print(generations_table(generations, states))


@generations_app.command(name="delete", help="Delete a generation that is not current.")
def delete_cmd(
    ctx: typer.Context,
    generation_id: int = typer.Argument(..., help="Generation to delete."),
) -> None:
    with open_engine(ctx) as engine:
        try:
            engine.generations.delete(generation_id)
        except AggonError as exc:
            fail(str(exc))
    console.print(f"[green]Deleted generation {generation_id}.[/green]")


@generations_app.command(name="gc", help="Keep the newest N generations plus current.")
def gc_cmd(
    ctx: typer.Context,
    keep: Optional[int] = typer.Option(
        None,
        "--keep",
        "-k",
        min=0,
        help="Generations to keep. Defaults to settings.backup_generations.",
    ),
) -> None:
    with open_engine(ctx) as engine:
        if keep is None:
            keep = engine.config.settings.backup_generations
        try:
            deleted = engine.generations.garbage_collect(keep)
        except AggonError as exc:
            fail(str(exc))

    if deleted:
        console.print(f"[green]Deleted generation(s): {', '.join(map(str, deleted))}[/green]")
    else:
        console.print("[dim]Nothing to delete.[/dim]")
