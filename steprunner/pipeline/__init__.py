"""Pipeline module: declarative sequences of skills and agents."""

from steprunner.pipeline.capability import (
    EchoExecutor,
    StepExecutionContext,
    StepExecutionResult,
    StepExecutor,
    load_executor,
)
from steprunner.pipeline.executor import (
    ExecutionOptions,
    PipelineExecutor,
    PipelineResult,
    StepResult,
    evaluate_condition,
    run_pipeline,
)
from steprunner.pipeline.parser import (
    ParseResult,
    PipelineLoadError,
    load_pipeline,
    parse_pipeline,
    validate_and_transform,
)
from steprunner.pipeline.schema import (
    Condition,
    ParallelGroup,
    PipelineDefinition,
    SequentialStep,
)

__all__ = [
    "Condition",
    "EchoExecutor",
    "ExecutionOptions",
    "ParallelGroup",
    "ParseResult",
    "PipelineDefinition",
    "PipelineExecutor",
    "PipelineLoadError",
    "PipelineResult",
    "SequentialStep",
    "StepExecutionContext",
    "StepExecutionResult",
    "StepExecutor",
    "StepResult",
    "evaluate_condition",
    "load_executor",
    "load_pipeline",
    "parse_pipeline",
    "run_pipeline",
    "validate_and_transform",
]
