"""The capability boundary: how the engine asks for a step's work to be done.

The engine never performs a step itself. It hands a
:class:`StepExecutionContext` to a :class:`StepExecutor` and awaits a
:class:`StepExecutionResult`.
"""

from __future__ import annotations

import importlib
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class StepExecutionContext:
    step_name: str
    input: dict[str, Any]
    timeout: float
    pipeline_id: str
    pipeline_name: str
    skill: str | None = None
    agent: str | None = None


@dataclass
class StepExecutionResult:
    output: Any = None
    model: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    thinking_tokens: int | None = None
    estimated_cost_usd: float | None = None


class StepExecutor(ABC):
    """Performs the work behind a pipeline step."""

    @abstractmethod
    async def execute(self, context: StepExecutionContext) -> StepExecutionResult: ...


class CallableStepExecutor(StepExecutor):
    """Adapt a plain async function to the :class:`StepExecutor` interface."""

    def __init__(
        self, fn: Callable[[StepExecutionContext], Awaitable[StepExecutionResult]]
    ) -> None:
        self._fn = fn

    async def execute(self, context: StepExecutionContext) -> StepExecutionResult:
        return await self._fn(context)


class EchoExecutor(StepExecutor):
    """Return each step's resolved input as its output, at zero cost.

    Useful for checking a pipeline's wiring (placeholders, schemas,
    conditions) before connecting real agents.
    """

    async def execute(self, context: StepExecutionContext) -> StepExecutionResult:
        return StepExecutionResult(output=dict(context.input), model="echo")


class ExecutorLoadError(Exception):
    """Raised when an executor reference cannot be imported."""


def load_executor(ref: str) -> StepExecutor:
    """Import an executor from a ``package.module:attribute`` reference.

    The attribute may be a :class:`StepExecutor` instance, a subclass
    (instantiated without arguments) or an async function.
    """
    if ref == "echo":
        return EchoExecutor()

    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ExecutorLoadError(f"Invalid executor reference '{ref}'. Use 'module:attribute'.")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ExecutorLoadError(f"Cannot import module '{module_name}': {e}") from e

    try:
        target = getattr(module, attr)
    except AttributeError:
        raise ExecutorLoadError(f"Module '{module_name}' has no attribute '{attr}'") from None

    if isinstance(target, StepExecutor):
        return target
    if inspect.isclass(target) and issubclass(target, StepExecutor):
        return target()
    if inspect.iscoroutinefunction(target):
        return CallableStepExecutor(target)
    raise ExecutorLoadError(
        f"'{ref}' is not a StepExecutor, StepExecutor subclass or async function"
    )
