"""``aggon store`` — inspect and garbage-collect the content store."""

from __future__ import annotations

from typing import Optional

import typer

from aggon.cli.context import console, fail, open_engine
from aggon.cli.render import store_table
from aggon.core.errors import AggonError

store_app = typer.Typer(
    help="Inspect and clean up the content store.",
    no_args_is_help=True,
)


@store_app.command(name="list", help="List stored blobs.")
def list_cmd(ctx: typer.Context) -> None:
    with open_engine(ctx) as engine:
        entries = list(engine.store.list_entries())

    if not entries:
        console.print("[dim]The store is empty.[/dim]")
        return
    console.print(store_table(entries))
    total = sum(entry.size for entry in entries)
    console.print(f"[bold]{len(entries)}[/bold] blob(s), {total:,} bytes")


@store_app.command(
    name="gc",
    help="Prune old generations, then remove blobs no generation references.",
)
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
        try:
            report = engine.collect_garbage(keep)
        except AggonError as exc:
            fail(str(exc))

    console.print(
        f"[green]Removed {len(report.generations)} generation(s) "
        f"and {len(report.blobs)} blob(s).[/green]"
    )
