"""Fan pipeline events out to every configured sink."""

from __future__ import annotations

from steprunner._log import get_logger
from steprunner.events.base import EventSink, PipelineEvent

logger = get_logger("events.dispatcher")


class EventDispatcher:
    def __init__(self, sinks: list[EventSink] | None = None) -> None:
        self._sinks: list[EventSink] = list(sinks or [])

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, event: PipelineEvent) -> None:
        for sink in self._sinks:
            try:
                sink.send(event)
            except Exception as exc:
                logger.error("Sink %s failed: %s", type(sink).__name__, exc)

    @property
    def count(self) -> int:
        return len(self._sinks)
