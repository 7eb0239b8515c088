"""Pipeline commands: run, validate."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.markup import escape
from rich.table import Table

from steprunner.cli._helpers import (
    console,
    create_dispatcher,
    create_registry,
    parse_variables,
)

if TYPE_CHECKING:
    from steprunner.pipeline.executor import PipelineResult
    from steprunner.pipeline.schema import PipelineDefinition


def _load_or_exit(pipeline_file: Path, label: str = "Error") -> PipelineDefinition:
    from steprunner.pipeline.parser import PipelineLoadError, load_pipeline

    try:
        return load_pipeline(pipeline_file)
    except PipelineLoadError as e:
        console.print(f"[red]{label}:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def run(
    pipeline_file: Annotated[Path, typer.Argument(help="Path to pipeline YAML")],
    var: Annotated[
        list[str] | None,
        typer.Option("--var", help="Variable in key=value format (repeatable)"),
    ] = None,
    executor: Annotated[
        str,
        typer.Option(help="Step executor as module:attribute, or 'echo'"),
    ] = "echo",
    max_cost: Annotated[
        float | None, typer.Option("--max-cost", help="Stop once total cost reaches this (USD)")
    ] = None,
    default_timeout: Annotated[
        float | None,
        typer.Option("--default-timeout", help="Timeout in ms for steps that set none"),
    ] = None,
    agent_id: Annotated[str | None, typer.Option("--agent-id", help="Agent id for this run")] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Validate and display steps without executing")
    ] = False,
    registry_db: Annotated[Path | None, typer.Option(help="Path to registry database")] = None,
    no_registry: Annotated[bool, typer.Option(help="Do not record the run")] = False,
    event_log: Annotated[
        Path | None, typer.Option("--event-log", help="Append run events to this file")
    ] = None,
    log_events: Annotated[
        bool, typer.Option("--log-events", help="Append run events to the default events log")
    ] = False,
    webhook: Annotated[
        list[str] | None, typer.Option("--webhook", help="POST run events to URL (repeatable)")
    ] = None,
) -> None:
    """Run a pipeline."""
    from steprunner.pipeline.capability import ExecutorLoadError, load_executor
    from steprunner.pipeline.executor import ExecutionOptions, run_pipeline

    definition = _load_or_exit(pipeline_file)
    variables = parse_variables(var)

    if dry_run:
        _display_steps(definition, {**definition.variables, **variables})
        console.print("\n[green]Pipeline definition is valid.[/green]")
        return

    try:
        step_executor = load_executor(executor)
    except ExecutorLoadError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None

    options = ExecutionOptions(
        variables=variables,
        agent_id=agent_id,
        max_total_cost_usd=max_cost,
    )
    if default_timeout is not None:
        options.default_timeout = default_timeout

    if log_events and event_log is None:
        from steprunner.config import get_events_log_path

        event_log = get_events_log_path()

    registry = create_registry(registry_db, no_registry)
    dispatcher = create_dispatcher(event_log, webhook)
    try:
        result = run_pipeline(
            definition,
            step_executor,
            options,
            registry=registry,
            dispatcher=dispatcher,
        )
    finally:
        if registry is not None:
            registry.close()

    _display_result(result)
    if not result.success:
        raise typer.Exit(1)


def validate(
    pipeline_file: Annotated[Path, typer.Argument(help="Path to pipeline YAML")],
    save: Annotated[
        bool, typer.Option("--save", help="Store the definition in the registry as pending")
    ] = False,
    registry_db: Annotated[Path | None, typer.Option(help="Path to registry database")] = None,
) -> None:
    """Validate a pipeline definition file."""
    from steprunner.pipeline.validator import check_definition_compatibility

    definition = _load_or_exit(pipeline_file, label="Invalid")
    _display_steps(definition, definition.variables)

    warnings = check_definition_compatibility(definition)
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    console.print(f"\n[green]Valid[/green] pipeline '{definition.name}'.")

    if save:
        from steprunner.registry.store import PipelineRegistry

        with PipelineRegistry(registry_db) as registry:
            pipeline_id = registry.save(definition, yaml_source=pipeline_file.read_text())
        console.print(f"Saved as [cyan]{pipeline_id}[/cyan]")


def _display_steps(definition: PipelineDefinition, variables: dict[str, Any]) -> None:
    from steprunner.pipeline.schema import ParallelGroup

    table = Table(title=f"Pipeline: {definition.name}")
    table.add_column("Step", style="cyan")
    table.add_column("Mode")
    table.add_column("Capability")
    table.add_column("Timeout")
    table.add_column("Condition")

    def _row(step: Any, mode: str) -> None:
        cond = step.condition
        cond_text = (
            f"{cond.step}.{cond.field} {cond.operator} {cond.value!r} -> {cond.goto}"
            if cond
            else "(always)"
        )
        timeout = f"{step.timeout:g}ms" if step.timeout else "(default)"
        table.add_row(step.name, mode, step.capability, timeout, cond_text)

    for entry in definition.steps:
        if isinstance(entry, ParallelGroup):
            table.add_row(entry.name, "parallel", f"{len(entry.steps)} step(s)", "", "")
            for sub in entry.steps:
                _row(sub, "  branch")
        else:
            _row(entry, "sequential")

    console.print(table)

    if variables:
        console.print("\n[bold]Variables:[/bold]")
        for k, v in variables.items():
            console.print(f"  {k} = {v!r}")


def _display_result(result: PipelineResult) -> None:
    table = Table(title=f"Pipeline: {result.name} ({result.pipeline_id})")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Cost")
    table.add_column("Tokens")
    table.add_column("Duration")

    for sr in result.steps:
        if sr.status == "completed":
            status = "[green]PASS[/green]"
        elif sr.status == "timeout":
            status = f"[yellow]TIMEOUT[/yellow] ({escape(sr.error or '')})"
        else:
            status = f"[red]FAIL[/red] ({escape(sr.error or '')})"
        table.add_row(
            sr.step_name,
            status,
            f"${sr.cost_usd:.4f}",
            str(sr.total_tokens),
            f"{sr.duration_ms}ms",
        )

    console.print(table)
    total = (
        f"[bold]Total: {result.total_duration_ms}ms, "
        f"${result.total_cost_usd:.4f}[/bold]"
    )
    if result.success:
        console.print(f"\n{total} [green]Pipeline succeeded[/green]")
    else:
        console.print(f"\n{total} [red]Pipeline failed[/red]: {escape(result.error or '')}")
