"""Shared test fixtures and helpers."""

from __future__ import annotations

import asyncio
import logging
import textwrap
from dataclasses import dataclass, field
from typing import Any

import pytest

from steprunner.pipeline.capability import (
    StepExecutionContext,
    StepExecutionResult,
    StepExecutor,
)
from steprunner.pipeline.parser import parse_pipeline
from steprunner.pipeline.schema import PipelineDefinition


def make_definition(text: str) -> PipelineDefinition:
    """Parse a YAML pipeline document, failing the test on any error."""
    result = parse_pipeline(textwrap.dedent(text))
    assert result.errors == [], result.errors
    assert result.definition is not None
    return result.definition


@dataclass
class Scripted:
    """Canned behaviour for one step of a :class:`ScriptedExecutor`."""

    output: Any = None
    cost: float = 0.0
    delay: float = 0.0
    error: Exception | None = None
    model: str | None = "test-model"
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ScriptedExecutor(StepExecutor):
    """Executor driven by per-step scripts; echoes the input when unscripted."""

    scripts: dict[str, Scripted] = field(default_factory=dict)
    calls: list[StepExecutionContext] = field(default_factory=list)

    @property
    def called(self) -> list[str]:
        return [c.step_name for c in self.calls]

    async def execute(self, context: StepExecutionContext) -> StepExecutionResult:
        self.calls.append(context)
        script = self.scripts.get(context.step_name, Scripted())
        if script.delay:
            await asyncio.sleep(script.delay)
        if script.error is not None:
            raise script.error
        output = script.output if script.output is not None else dict(context.input)
        return StepExecutionResult(
            output=output,
            model=script.model,
            input_tokens=script.input_tokens,
            output_tokens=script.output_tokens,
            estimated_cost_usd=script.cost,
        )


@pytest.fixture()
def caplog_steprunner(caplog):
    """Attach caplog's handler to the ``steprunner`` logger, which does not propagate."""
    root = logging.getLogger("steprunner")
    root.addHandler(caplog.handler)
    yield caplog
    root.removeHandler(caplog.handler)
