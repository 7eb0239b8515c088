"""Tests for the capability boundary and executor loading."""

from __future__ import annotations

import asyncio
import sys
import types

import pytest

from steprunner.pipeline.capability import (
    CallableStepExecutor,
    EchoExecutor,
    ExecutorLoadError,
    StepExecutionContext,
    StepExecutionResult,
    StepExecutor,
    load_executor,
)


def _context(**overrides) -> StepExecutionContext:
    defaults = {
        "step_name": "a",
        "input": {"q": 1},
        "timeout": 1000,
        "pipeline_id": "pid",
        "pipeline_name": "p",
        "skill": "s",
    }
    defaults.update(overrides)
    return StepExecutionContext(**defaults)


class _Custom(StepExecutor):
    async def execute(self, context):
        return StepExecutionResult(output="custom")


async def _fn(context):
    return StepExecutionResult(output=context.step_name)


@pytest.fixture()
def fake_module(monkeypatch):
    mod = types.ModuleType("fake_executors")
    mod.Custom = _Custom
    mod.instance = _Custom()
    mod.fn = _fn
    mod.not_callable = 42
    monkeypatch.setitem(sys.modules, "fake_executors", mod)
    return mod


class TestEchoExecutor:
    def test_echoes_input(self):
        result = asyncio.run(EchoExecutor().execute(_context()))
        assert result.output == {"q": 1}
        assert result.model == "echo"
        assert result.estimated_cost_usd is None


class TestCallableStepExecutor:
    def test_wraps_function(self):
        result = asyncio.run(CallableStepExecutor(_fn).execute(_context(step_name="z")))
        assert result.output == "z"


class TestLoadExecutor:
    def test_echo(self):
        assert isinstance(load_executor("echo"), EchoExecutor)

    def test_subclass(self, fake_module):
        assert isinstance(load_executor("fake_executors:Custom"), _Custom)

    def test_instance(self, fake_module):
        assert load_executor("fake_executors:instance") is fake_module.instance

    def test_coroutine_function(self, fake_module):
        assert isinstance(load_executor("fake_executors:fn"), CallableStepExecutor)

    def test_bad_reference(self):
        with pytest.raises(ExecutorLoadError, match="Invalid executor reference"):
            load_executor("no_colon")

    def test_missing_module(self):
        with pytest.raises(ExecutorLoadError, match="Cannot import module"):
            load_executor("does_not_exist_xyz:thing")

    def test_missing_attribute(self, fake_module):
        with pytest.raises(ExecutorLoadError, match="has no attribute"):
            load_executor("fake_executors:missing")

    def test_wrong_kind(self, fake_module):
        with pytest.raises(ExecutorLoadError, match="is not a StepExecutor"):
            load_executor("fake_executors:not_callable")
