"""Custom sink: hand each event to a user-provided Python function."""

from __future__ import annotations

import importlib

from steprunner._log import get_logger
from steprunner.events.base import EventSink, PipelineEvent

logger = get_logger("events.custom")


class CustomSink(EventSink):
    def __init__(self, module: str, function: str) -> None:
        self._module_name = module
        self._function_name = function

    def send(self, event: PipelineEvent) -> None:
        try:
            mod = importlib.import_module(self._module_name)
            func = getattr(mod, self._function_name)
            func(event.to_dict())
        except Exception as exc:
            logger.error("Failed calling %s.%s: %s", self._module_name, self._function_name, exc)
