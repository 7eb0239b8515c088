"""File sink: append events to a local file."""

from __future__ import annotations

import json
import os
from pathlib import Path

from steprunner._log import get_logger
from steprunner.events.base import EventSink, PipelineEvent

logger = get_logger("events.file")


class FileSink(EventSink):
    def __init__(self, path: str | Path, fmt: str = "json") -> None:
        self._path = Path(os.path.expandvars(str(path)))
        self._format = fmt

    def _render(self, event: PipelineEvent) -> str:
        if self._format == "json":
            return json.dumps(event.to_dict(), default=str) + "\n"
        payload = event.payload
        status = payload.get("status", "")
        detail = f" | {payload['error']}" if payload.get("error") else ""
        subject = payload.get("step_name") or payload.get("name") or event.pipeline_id
        return f"[{event.timestamp}] {event.channel} | {subject} | {status}{detail}\n"

    def send(self, event: PipelineEvent) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            # owner-only, payloads carry step output
            fd = os.open(str(self._path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            try:
                os.write(fd, self._render(event).encode())
            finally:
                os.close(fd)
        except Exception as exc:
            logger.error("Failed to write to %s: %s", self._path, exc)
