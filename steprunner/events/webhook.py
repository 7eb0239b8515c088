"""Webhook sink: POST pipeline events as JSON."""

from __future__ import annotations

import os
import time

import httpx

from steprunner._log import get_logger
from steprunner.events.base import (
    PIPELINE_COMPLETED,
    PIPELINE_FAILED,
    EventSink,
    PipelineEvent,
)

logger = get_logger("events.webhook")

_RUN_EVENTS = frozenset({PIPELINE_COMPLETED, PIPELINE_FAILED})


class WebhookSink(EventSink):
    """Deliver events to an HTTP endpoint.

    Only run-level events (``pipeline.completed`` / ``pipeline.failed``) are
    retried, with a linearly growing pause between attempts. Step events get
    a single attempt so a slow endpoint cannot hold back the run; the final
    run event carries the totals they would have reported.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = 5.0,
        retry_count: int = 2,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        self._url = os.path.expandvars(url)
        self._headers = {k: os.path.expandvars(v) for k, v in (headers or {}).items()}
        self._timeout = timeout_seconds
        self._retry_count = retry_count
        self._retry_delay = retry_delay_seconds

    def attempts_for(self, event: PipelineEvent) -> int:
        return 1 + self._retry_count if event.channel in _RUN_EVENTS else 1

    def send(self, event: PipelineEvent) -> None:
        attempts = self.attempts_for(event)
        headers = {"X-Steprunner-Event": event.channel, **self._headers}
        last_err: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(self._url, json=event.to_dict(), headers=headers)
                    response.raise_for_status()
                return
            except Exception as exc:
                last_err = exc
                if attempt < attempts:
                    time.sleep(self._retry_delay * attempt)

        logger.error(
            "Dropped %s for pipeline %s after %d attempt(s): %s",
            event.channel,
            event.pipeline_id,
            attempts,
            last_err,
        )
