"""History commands: list, show, cost, delete."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from steprunner.cli._helpers import console, open_existing_registry

app = typer.Typer(help="Inspect recorded pipeline runs.")

_STATUS_STYLE = {
    "completed": "green",
    "failed": "red",
    "timeout": "yellow",
    "running": "cyan",
    "pending": "dim",
}


def _styled(status: str) -> str:
    style = _STATUS_STYLE.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


@app.command("list")
def history_list(
    name: Annotated[str | None, typer.Option(help="Only runs of this pipeline")] = None,
    limit: Annotated[int, typer.Option(help="Max runs to show")] = 20,
    registry_db: Annotated[Path | None, typer.Option(help="Path to registry database")] = None,
) -> None:
    """List recent pipeline runs."""
    with open_existing_registry(registry_db) as registry:
        records = registry.get_history(name, limit) if name else registry.list_pipelines(limit)

    if not records:
        console.print("No pipeline runs recorded.")
        return

    table = Table(title="Pipeline runs")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Steps")
    table.add_column("Cost")
    table.add_column("Created")

    for r in records:
        table.add_row(
            r.pipeline_id,
            r.name,
            _styled(r.status),
            f"{r.completed_steps}/{r.total_steps}",
            f"${r.total_cost_usd:.4f}",
            r.created_at,
        )
    console.print(table)


@app.command("show")
def history_show(
    pipeline_id: Annotated[str, typer.Argument(help="Pipeline run ID")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw records as JSON")] = False,
    registry_db: Annotated[Path | None, typer.Option(help="Path to registry database")] = None,
) -> None:
    """Show one run and its steps."""
    with open_existing_registry(registry_db) as registry:
        record = registry.load(pipeline_id)
        steps = registry.get_steps(pipeline_id) if record else []

    if record is None:
        console.print(f"[red]Error:[/red] No pipeline run with id '{escape(pipeline_id)}'")
        raise typer.Exit(1)

    if as_json:
        data = record.to_dict()
        data["steps"] = [s.to_dict() for s in steps]
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    console.print(f"[bold]{escape(record.name)}[/bold] ({record.pipeline_id})")
    console.print(f"  Status:  {_styled(record.status)}")
    console.print(f"  Steps:   {record.completed_steps}/{record.total_steps}")
    console.print(f"  Cost:    ${record.total_cost_usd:.4f}")
    console.print(f"  Started: {record.started_at or '(never)'}")
    console.print(f"  Ended:   {record.completed_at or '(running)'}")

    table = Table()
    table.add_column("#")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Model")
    table.add_column("Tokens")
    table.add_column("Cost")
    table.add_column("Error")

    for s in steps:
        tokens = s.input_tokens + s.output_tokens + s.thinking_tokens
        table.add_row(
            str(s.step_number),
            s.name,
            _styled(s.status),
            s.model or "",
            str(tokens) if tokens else "",
            f"${s.cost_usd:.4f}",
            escape(s.error or ""),
        )
    console.print(table)


@app.command("cost")
def history_cost(
    target: Annotated[str, typer.Argument(help="Pipeline run ID or pipeline name")],
    registry_db: Annotated[Path | None, typer.Option(help="Path to registry database")] = None,
) -> None:
    """Show the cost of one run, or aggregated cost across runs of a pipeline."""
    with open_existing_registry(registry_db) as registry:
        summary = registry.get_cost_summary(target)
        aggregate = registry.get_aggregate_cost(target) if summary is None else None

    if summary is not None:
        table = Table(title=f"Cost: {summary.name} ({summary.pipeline_id})")
        table.add_column("Step", style="cyan")
        table.add_column("Cost")
        for sc in summary.step_costs:
            table.add_row(sc.step_name, f"${sc.cost_usd:.4f}")
        console.print(table)
        console.print(
            f"Total: ${summary.total_cost_usd:.4f} "
            f"({summary.execution_count} run(s) of '{escape(summary.name)}')"
        )
        return

    assert aggregate is not None
    if aggregate.execution_count == 0:
        console.print(f"[red]Error:[/red] No runs found for '{escape(target)}'")
        raise typer.Exit(1)
    console.print(f"[bold]{escape(target)}[/bold]")
    console.print(f"  Runs:    {aggregate.execution_count}")
    console.print(f"  Total:   ${aggregate.total_cost_usd:.4f}")
    console.print(f"  Average: ${aggregate.avg_cost_usd:.4f}")


@app.command("delete")
def history_delete(
    pipeline_id: Annotated[str, typer.Argument(help="Pipeline run ID")],
    registry_db: Annotated[Path | None, typer.Option(help="Path to registry database")] = None,
) -> None:
    """Delete a recorded run and its steps."""
    with open_existing_registry(registry_db) as registry:
        deleted = registry.delete(pipeline_id)

    if not deleted:
        console.print(f"[red]Error:[/red] No pipeline run with id '{escape(pipeline_id)}'")
        raise typer.Exit(1)
    console.print(f"[green]Deleted[/green] {pipeline_id}.")
