"""Deterministic execution engine for pipeline definitions.

A run walks the top-level steps in declaration order. Sequential steps run
one at a time; a parallel group dispatches all of its sub-steps at once and
waits for every one of them to settle before moving on. A failing or
timed-out step stops the run (after its group drains, for parallel
sub-steps). A triggered condition skips ahead to its ``goto`` target.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from steprunner._ids import new_uuid, short_id
from steprunner._log import get_logger
from steprunner.config import DEFAULT_STEP_TIMEOUT_MS
from steprunner.events.base import (
    PIPELINE_COMPLETED,
    PIPELINE_FAILED,
    STEP_COMPLETED,
    PipelineEvent,
)
from steprunner.pipeline.capability import StepExecutionContext, StepExecutor
from steprunner.pipeline.parser import count_steps
from steprunner.pipeline.resolver import (
    ResolutionContext,
    ResolutionError,
    get_nested_value,
    resolve_variables,
)
from steprunner.pipeline.schema import (
    Condition,
    ParallelGroup,
    PipelineDefinition,
    SequentialStep,
)
from steprunner.pipeline.validator import deep_equal, validate_step_input, validate_step_output

if TYPE_CHECKING:
    from steprunner.events.dispatcher import EventDispatcher
    from steprunner.registry.store import PipelineRegistry

logger = get_logger("pipeline.executor")

StepStatus = Literal["completed", "failed", "skipped", "timeout"]
PipelineStatus = Literal["completed", "failed"]

_FAILING = ("failed", "timeout")


@dataclass
class StepResult:
    step_name: str
    status: StepStatus
    output: Any = None
    cost_usd: float = 0.0
    duration_ms: int = 0
    error: str | None = None
    agent_id: str | None = None
    session_id: str | None = None
    step_id: str | None = None
    model: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens + self.thinking_tokens


@dataclass
class PipelineResult:
    pipeline_id: str
    name: str
    status: PipelineStatus
    steps: list[StepResult] = field(default_factory=list)
    total_cost_usd: float = 0.0
    total_duration_ms: int = 0
    variables: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == "completed"


@dataclass
class ExecutionOptions:
    """Per-run settings.

    ``max_total_cost_usd`` is checked before each top-level entry and only
    ``None`` disables it. A ceiling of ``0`` is an actual ceiling: the run
    stops before its first step instead of treating zero as unlimited.
    """

    variables: dict[str, Any] | None = None
    agent_id: str | None = None
    default_timeout: float = DEFAULT_STEP_TIMEOUT_MS
    max_total_cost_usd: float | None = None


@dataclass
class _Run:
    """Mutable state of one execution; never shared across runs."""

    pipeline_id: str
    definition: PipelineDefinition
    options: ExecutionOptions
    agent_id: str
    variables: dict[str, Any]
    step_results: dict[str, StepResult] = field(default_factory=dict)
    results: list[StepResult] = field(default_factory=list)
    completed_steps: int = 0
    total_cost_usd: float = 0.0
    status: PipelineStatus = "completed"
    error: str | None = None

    def resolution_context(self) -> ResolutionContext:
        return ResolutionContext(variables=self.variables, step_results=dict(self.step_results))


def _format_ms(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_condition(condition: Condition, step_results: Mapping[str, StepResult]) -> bool:
    """Evaluate *condition* against the referenced step's completed output.

    Returns False when the step has not completed, its output is not a
    mapping, or the operands cannot be compared.
    """
    target = step_results.get(condition.step)
    if target is None or target.status != "completed":
        return False
    if not isinstance(target.output, Mapping):
        return False

    actual = get_nested_value(target.output, condition.field.split("."))
    expected = condition.value
    op = condition.operator

    if op == "eq":
        return deep_equal(actual, expected)
    if op == "neq":
        return not deep_equal(actual, expected)
    if op in ("gt", "lt", "gte", "lte"):
        if not (_is_number(actual) and _is_number(expected)):
            return False
        if op == "gt":
            return actual > expected
        if op == "lt":
            return actual < expected
        if op == "gte":
            return actual >= expected
        return actual <= expected
    if op == "contains":
        if isinstance(actual, str):
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, (list, tuple)):
            return any(deep_equal(item, expected) for item in actual)
        return False
    return False


def _matches(entry: SequentialStep | ParallelGroup, name: str) -> bool:
    if entry.name == name:
        return True
    return isinstance(entry, ParallelGroup) and entry.contains(name)


class PipelineExecutor:
    """Runs pipeline definitions through an injected :class:`StepExecutor`.

    *registry* receives the audit trail as the run progresses and
    *dispatcher* receives notification events. Both are optional.
    """

    def __init__(
        self,
        registry: PipelineRegistry | None = None,
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._background: set[asyncio.Task] = set()

    async def execute(
        self,
        definition: PipelineDefinition,
        executor: StepExecutor,
        options: ExecutionOptions | None = None,
    ) -> PipelineResult:
        """Execute *definition* and return its result.

        Step failures, timeouts and a breached cost ceiling are reported
        through ``PipelineResult.status``; this method does not raise for them.
        """
        options = options or ExecutionOptions()
        start = time.monotonic()
        run = _Run(
            pipeline_id=new_uuid(),
            definition=definition,
            options=options,
            agent_id=options.agent_id or f"pipeline:{definition.name}:{short_id(8)}",
            variables={**definition.variables, **(options.variables or {})},
        )
        total_steps = count_steps(definition)

        logger.debug(
            "Starting pipeline '%s' (%s) with %d step(s)",
            definition.name,
            run.pipeline_id,
            total_steps,
        )
        if self._registry is not None:
            self._registry.start_pipeline(run.pipeline_id, definition, total_steps)

        try:
            await self._walk(run, executor)
        except Exception as e:
            logger.exception("Pipeline '%s' aborted by an internal error", definition.name)
            run.status = "failed"
            run.error = run.error or f"Orchestration fault: {e}"

        return await self._finalize(run, total_steps, _elapsed_ms(start))

    async def drain_background(self) -> None:
        """Wait for capability calls still running after their step timed out."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # -- orchestration -----------------------------------------------------

    async def _walk(self, run: _Run, executor: StepExecutor) -> None:
        jump_to: str | None = None
        ceiling = run.options.max_total_cost_usd

        for entry in run.definition.steps:
            if jump_to is not None:
                if not _matches(entry, jump_to):
                    logger.debug("Skipping '%s' on the way to '%s'", entry.name, jump_to)
                    continue
                jump_to = None

            if ceiling is not None and run.total_cost_usd >= ceiling:
                run.status = "failed"
                run.error = (
                    f"Cost ceiling of ${ceiling:.4f} reached "
                    f"(spent ${run.total_cost_usd:.4f}) before step '{entry.name}'"
                )
                logger.warning("Pipeline '%s': %s", run.definition.name, run.error)
                return

            if isinstance(entry, ParallelGroup):
                await self._run_group(run, entry, executor)
                if run.status == "failed":
                    return
                continue

            result = await self._run_step(
                run, entry, executor, run.resolution_context(), run.completed_steps
            )
            self._record(run, result)
            if result.status in _FAILING:
                return

            if entry.condition is not None and evaluate_condition(entry.condition, run.step_results):
                logger.debug(
                    "Condition on '%s' matched; jumping to '%s'", entry.name, entry.condition.goto
                )
                jump_to = entry.condition.goto

    async def _run_group(self, run: _Run, group: ParallelGroup, executor: StepExecutor) -> None:
        context = run.resolution_context()
        base = run.completed_steps
        tasks = [
            asyncio.create_task(self._run_step(run, sub, executor, context, base + i))
            for i, sub in enumerate(group.steps)
        ]
        # record in settle order; siblings keep running when one fails
        for settled in asyncio.as_completed(tasks):
            self._record(run, await settled)

    def _record(self, run: _Run, result: StepResult) -> None:
        run.step_results[result.step_name] = result
        run.results.append(result)
        run.completed_steps += 1
        run.total_cost_usd += result.cost_usd
        if result.status in _FAILING:
            run.status = "failed"
        if self._registry is not None:
            self._registry.update_progress(run.pipeline_id, run.completed_steps, run.total_cost_usd)

    # -- single step ---------------------------------------------------------

    async def _run_step(
        self,
        run: _Run,
        step: SequentialStep,
        executor: StepExecutor,
        context: ResolutionContext,
        step_number: int,
    ) -> StepResult:
        started = time.monotonic()
        step_id = new_uuid()
        session_id = new_uuid()
        timeout = step.timeout or run.options.default_timeout

        if self._registry is not None:
            self._registry.start_step(
                step_id=step_id,
                pipeline_id=run.pipeline_id,
                step_number=step_number,
                name=step.name,
                agent_id=run.agent_id,
                session_id=session_id,
                input_schema=step.input_schema,
                output_schema=step.output_schema,
            )

        def failure(status: StepStatus, error: str) -> StepResult:
            return StepResult(
                step_name=step.name,
                status=status,
                duration_ms=_elapsed_ms(started),
                error=error,
                agent_id=run.agent_id,
                session_id=session_id,
                step_id=step_id,
            )

        async def attempt() -> StepResult:
            try:
                resolved = resolve_variables(step.input, context)
            except ResolutionError as e:
                return failure("failed", str(e))

            input_errors = validate_step_input(step.name, resolved, step.input_schema)
            if input_errors:
                return failure("failed", "; ".join(input_errors))

            request = StepExecutionContext(
                step_name=step.name,
                skill=step.skill,
                agent=step.agent,
                input=resolved,
                timeout=timeout,
                pipeline_id=run.pipeline_id,
                pipeline_name=run.definition.name,
            )
            logger.debug("Step '%s' dispatched (timeout %sms)", step.name, _format_ms(timeout))

            task = asyncio.ensure_future(executor.execute(request))
            done, _ = await asyncio.wait({task}, timeout=timeout / 1000)
            if not done:
                self._detach(task, step.name)
                message = f'Step "{step.name}" timed out after {_format_ms(timeout)}ms'
                return failure("timeout", message)

            if task.cancelled():
                return failure("failed", f'Step "{step.name}" was cancelled')
            exc = task.exception()
            if exc is not None:
                return failure("failed", str(exc) or type(exc).__name__)

            outcome = task.result()
            output_errors = validate_step_output(step.name, outcome.output, step.output_schema)
            if output_errors:
                return failure("failed", "; ".join(output_errors))

            return StepResult(
                step_name=step.name,
                status="completed",
                output=outcome.output,
                cost_usd=outcome.estimated_cost_usd or 0.0,
                duration_ms=_elapsed_ms(started),
                agent_id=run.agent_id,
                session_id=session_id,
                step_id=step_id,
                model=outcome.model,
                input_tokens=outcome.input_tokens or 0,
                output_tokens=outcome.output_tokens or 0,
                thinking_tokens=outcome.thinking_tokens or 0,
            )

        # anything raised before the step settles becomes that step's failure
        try:
            result = await attempt()
        except Exception as e:
            logger.debug("Step '%s' raised", step.name, exc_info=True)
            result = failure("failed", str(e) or type(e).__name__)
        return await self._settle(run, result)

    async def _settle(self, run: _Run, result: StepResult) -> StepResult:
        """Persist a step's terminal state and announce it."""
        if result.status == "completed":
            logger.debug("Step '%s' completed in %dms", result.step_name, result.duration_ms)
            if self._registry is not None and result.step_id:
                self._registry.complete_step(
                    result.step_id,
                    output=result.output,
                    cost_usd=result.cost_usd,
                    model=result.model,
                    input_tokens=result.input_tokens,
                    output_tokens=result.output_tokens,
                    thinking_tokens=result.thinking_tokens,
                )
            payload = {
                "pipeline_id": run.pipeline_id,
                "step_name": result.step_name,
                "step_id": result.step_id,
                "status": result.status,
                "cost_usd": result.cost_usd,
                "duration_ms": result.duration_ms,
            }
        else:
            logger.warning("Step '%s' %s: %s", result.step_name, result.status, result.error)
            if self._registry is not None and result.step_id:
                self._registry.fail_step(
                    result.step_id, status=result.status, error=result.error or ""
                )
            payload = {
                "pipeline_id": run.pipeline_id,
                "step_name": result.step_name,
                "step_id": result.step_id,
                "status": result.status,
                "error": result.error,
                "duration_ms": result.duration_ms,
            }

        await self._emit(
            PipelineEvent(
                channel=STEP_COMPLETED,
                payload=payload,
                pipeline_id=run.pipeline_id,
                agent_id=run.agent_id,
                session_id=result.session_id,
            )
        )
        return result

    def _detach(self, task: asyncio.Future, step_name: str) -> None:
        """Let a timed-out capability call finish in the background."""
        self._background.add(task)

        def _done(fut: asyncio.Future) -> None:
            self._background.discard(fut)
            if not fut.cancelled() and fut.exception() is not None:
                logger.debug(
                    "Late failure from timed-out step '%s': %s", step_name, fut.exception()
                )

        task.add_done_callback(_done)

    # -- completion ----------------------------------------------------------

    async def _finalize(self, run: _Run, total_steps: int, duration_ms: int) -> PipelineResult:
        first_failure = next((r for r in run.results if r.status in _FAILING), None)
        if run.status == "failed" and run.error is None and first_failure is not None:
            run.error = first_failure.error

        result = PipelineResult(
            pipeline_id=run.pipeline_id,
            name=run.definition.name,
            status=run.status,
            steps=list(run.results),
            total_cost_usd=run.total_cost_usd,
            total_duration_ms=duration_ms,
            variables=run.variables,
            error=run.error if run.status == "failed" else None,
        )

        try:
            if self._registry is not None:
                self._registry.finalize_pipeline(
                    run.pipeline_id, run.status, run.completed_steps, run.total_cost_usd
                )
            payload: dict[str, Any] = {
                "pipeline_id": run.pipeline_id,
                "name": run.definition.name,
                "status": run.status,
                "total_cost_usd": run.total_cost_usd,
                "completed_steps": run.completed_steps,
                "total_steps": total_steps,
            }
            if result.error:
                payload["error"] = result.error
            await self._emit(
                PipelineEvent(
                    channel=PIPELINE_COMPLETED if result.success else PIPELINE_FAILED,
                    payload=payload,
                    pipeline_id=run.pipeline_id,
                    agent_id=run.agent_id,
                )
            )
        except Exception as e:
            logger.error("Failed to record completion of pipeline '%s': %s", result.name, e)

        level = logger.debug if result.success else logger.warning
        level(
            "Pipeline '%s' %s: %d step(s), $%.4f, %dms",
            result.name,
            result.status,
            len(result.steps),
            result.total_cost_usd,
            result.total_duration_ms,
        )
        return result

    async def _emit(self, event: PipelineEvent) -> None:
        if self._dispatcher is None or self._dispatcher.count == 0:
            return
        # sinks may block (webhooks), keep them off the event loop
        await asyncio.to_thread(self._dispatcher.emit, event)


def run_pipeline(
    definition: PipelineDefinition,
    executor: StepExecutor,
    options: ExecutionOptions | None = None,
    *,
    registry: PipelineRegistry | None = None,
    dispatcher: EventDispatcher | None = None,
) -> PipelineResult:
    """Synchronous entry point: run *definition* on a fresh event loop."""
    engine = PipelineExecutor(registry=registry, dispatcher=dispatcher)
    return asyncio.run(engine.execute(definition, executor, options))
