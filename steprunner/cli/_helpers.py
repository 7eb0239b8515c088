"""Shared CLI helpers: console, option parsing and registry/sink wiring."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
import yaml
from rich.console import Console

if TYPE_CHECKING:
    from steprunner.events.dispatcher import EventDispatcher
    from steprunner.registry.store import PipelineRegistry

console = Console()


def parse_variables(pairs: list[str] | None) -> dict[str, Any]:
    """Turn ``key=value`` options into a dict, reading values as YAML scalars."""
    variables: dict[str, Any] = {}
    for pair in pairs or []:
        if "=" not in pair:
            console.print(f"[red]Error:[/red] Invalid variable format: '{pair}'. Use key=value.")
            raise typer.Exit(1)
        key, raw = pair.split("=", 1)
        try:
            value = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            value = raw
        # only scalars are coerced; anything structured stays the literal text
        variables[key] = value if isinstance(value, (str, int, float, bool)) or value is None else raw
    return variables


def create_registry(registry_db: Path | None, no_registry: bool) -> PipelineRegistry | None:
    if no_registry:
        return None
    from steprunner.registry.store import PipelineRegistry

    return PipelineRegistry(registry_db)


def open_existing_registry(registry_db: Path | None) -> PipelineRegistry:
    """Open the registry for read commands, exiting when the database does not exist."""
    from steprunner.config import get_registry_db_path
    from steprunner.registry.store import PipelineRegistry

    db_path = registry_db or get_registry_db_path()
    if not db_path.exists():
        console.print(f"[red]Error:[/red] Registry database not found at {db_path}")
        raise typer.Exit(1)
    return PipelineRegistry(db_path)


def create_dispatcher(event_log: Path | None, webhooks: list[str] | None) -> EventDispatcher | None:
    if event_log is None and not webhooks:
        return None
    from steprunner.events.dispatcher import EventDispatcher
    from steprunner.events.file import FileSink
    from steprunner.events.webhook import WebhookSink

    dispatcher = EventDispatcher()
    if event_log is not None:
        dispatcher.add_sink(FileSink(event_log))
    for url in webhooks or []:
        dispatcher.add_sink(WebhookSink(url))
    return dispatcher
