"""Notification events emitted while a pipeline runs."""

from steprunner.events.base import (
    PIPELINE_COMPLETED,
    PIPELINE_FAILED,
    STEP_COMPLETED,
    EventSink,
    PipelineEvent,
)
from steprunner.events.dispatcher import EventDispatcher

__all__ = [
    "PIPELINE_COMPLETED",
    "PIPELINE_FAILED",
    "STEP_COMPLETED",
    "EventDispatcher",
    "EventSink",
    "PipelineEvent",
]
