"""Rich renderables for plans, results, generations and store entries.

Color scheme
------------
- green     : install, CURRENT, success
- yellow    : update, CREATED (never promoted)
- red       : uninstall, errors
- dim       : symlink (no change), SUPERSEDED
"""

from __future__ import annotations

from collections.abc import Iterable

from rich.panel import Panel
from rich.table import Table

from aggon.models.generation import Generation, GenerationState
from aggon.models.plan import BuildPlan, OperationType, ReconcileResult
from aggon.models.store import StoreEntry

_OP_STYLES: dict[OperationType, str] = {
    OperationType.INSTALL: "[green]install[/green]",
    OperationType.UPDATE: "[yellow]update[/yellow]",
    OperationType.UNINSTALL: "[red]uninstall[/red]",
    OperationType.SYMLINK: "[dim]symlink[/dim]",
}

_STATE_STYLES: dict[GenerationState, str] = {
    GenerationState.CURRENT: "[bold green]current[/bold green]",
    GenerationState.SUPERSEDED: "[dim]superseded[/dim]",
    GenerationState.CREATED: "[yellow]created[/yellow]",
}


def short(content_hash: str | None, provisional: bool = False) -> str:
    if not content_hash:
        return "-"
    return "(pending fetch)" if provisional else content_hash[:12]


def plan_table(plan: BuildPlan) -> Table:
    table = Table(title="Planned Operations")
    table.add_column("Installation", style="cyan")
    table.add_column("Addon", style="bold")
    table.add_column("Action")
    table.add_column("From", style="dim")
    table.add_column("To")

    for op in plan.operations:
        table.add_row(
            op.installation,
            op.addon,
            _OP_STYLES[op.type],
            short(op.from_hash),
            "-" if op.type == OperationType.UNINSTALL else short(op.to_hash, op.provisional),
        )
    return table


def plan_summary(plan: BuildPlan) -> str:
    base = plan.current_generation_id or "none"
    return (
        f"[bold]Base generation:[/bold] {base}  "
        f"[bold]Install:[/bold] {plan.count(OperationType.INSTALL)}  "
        f"[bold]Update:[/bold] {plan.count(OperationType.UPDATE)}  "
        f"[bold]Uninstall:[/bold] {plan.count(OperationType.UNINSTALL)}  "
        f"[bold]Unchanged:[/bold] {plan.count(OperationType.SYMLINK)}  "
        f"[bold]Downloads:[/bold] {len(plan.downloads)}"
    )


def result_panel(result: ReconcileResult, title: str = "Switch") -> Panel:
    lines = [
        f"[bold]Generation:[/bold]  {result.generation}",
        f"[bold]Operations:[/bold]  {result.operations}",
        f"[bold]Downloaded:[/bold]  {result.downloaded}",
        f"[bold]Linked:[/bold]      {result.installed}",
        f"[bold]Duration:[/bold]    {result.duration:.2f}s",
    ]
    if result.success:
        lines.insert(0, "[bold green]Generation is now current.[/bold green]\n")
        border = "green"
    else:
        lines.insert(0, "[bold red]Failed; previous generation left current.[/bold red]\n")
        lines.append("")
        lines.extend(f"[red]- {error}[/red]" for error in result.errors)
        border = "red"
    return Panel(
        "\n".join(lines),
        title=f"[bold]{title}[/bold]",
        border_style=border,
        padding=(1, 2),
    )


def generations_table(
    generations: Iterable[Generation], states: dict[int, GenerationState]
) -> Table:
    table = Table(title="Generations")
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Created")
    table.add_column("State")
    table.add_column("Addons", justify="right")
    table.add_column("State Hash", style="dim")
    table.add_column("Description")

    for generation in generations:
        addons = sum(len(s.addons) for s in generation.installations.values())
        table.add_row(
            str(generation.id),
            generation.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            _STATE_STYLES.get(states.get(generation.id), "-"),
            str(addons),
            generation.state_hash,
            generation.description,
        )
    return table


def store_table(entries: Iterable[StoreEntry]) -> Table:
    table = Table(title="Content Store")
    table.add_column("Hash", style="bold")
    table.add_column("Size", justify="right")
    table.add_column("Source", style="cyan")
    table.add_column("Ref")
    table.add_column("Last Used", style="dim")

    for entry in entries:
        table.add_row(
            entry.hash[:12],
            f"{entry.size:,}",
            entry.source_url or "-",
            entry.source_ref or "-",
            entry.accessed_at.strftime("%Y-%m-%d %H:%M"),
        )
    return table
