"""Base types for pipeline notification events."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

STEP_COMPLETED = "pipeline.step_completed"
PIPELINE_COMPLETED = "pipeline.completed"
PIPELINE_FAILED = "pipeline.failed"


@dataclass
class PipelineEvent:
    channel: str
    payload: dict[str, Any]
    pipeline_id: str
    source: str = "steprunner"
    agent_id: str | None = None
    session_id: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class EventSink(ABC):
    """Abstract base for event sinks. ``send`` must never raise."""

    @abstractmethod
    def send(self, event: PipelineEvent) -> None: ...
