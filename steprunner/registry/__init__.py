"""Persistent record of pipeline runs and their steps."""

from steprunner.registry.store import (
    AggregateCost,
    PipelineCostSummary,
    PipelineRecord,
    PipelineRegistry,
    PipelineStepRecord,
    StepCost,
)

__all__ = [
    "AggregateCost",
    "PipelineCostSummary",
    "PipelineRecord",
    "PipelineRegistry",
    "PipelineStepRecord",
    "StepCost",
]
