"""``aggon rollback [ID]`` — restore a previously promoted generation."""

from __future__ import annotations

from typing import Optional

import typer

from aggon.cli.context import console, fail, open_engine
from aggon.cli.render import result_panel
from aggon.core.errors import AggonError


def rollback_cmd(
    ctx: typer.Context,
    generation_id: Optional[int] = typer.Argument(
        None,
        help="Generation to restore. Defaults to the one before current.",
    ),
) -> None:
    """Roll back to an earlier generation."""
    with open_engine(ctx) as engine:
        try:
            result = engine.rollback(generation_id)
        except AggonError as exc:
            fail(str(exc))

    console.print(result_panel(result, title="Rollback"))
    if not result.success:
        raise typer.Exit(code=1)
