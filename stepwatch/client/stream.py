"""Client side of the step-event stream."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable

import httpx
from pydantic import ValidationError

from stepwatch.config import StreamConfig
from stepwatch.errors import TransportError
from stepwatch.events.models import EventPhase, StepEvent
from stepwatch.events.reconciler import ReconcilerState, TaskRecord, reduce

logger = logging.getLogger("stepwatch.client")


class ProgressTracker:
    """Per-observer view: a bounded event buffer plus the reconciled task list."""

    def __init__(self, *, project_ref: str | None = None, max_events: int = 400) -> None:
        self.project_ref = project_ref
        self.events: deque[StepEvent] = deque(maxlen=max_events)
        self.state = ReconcilerState()

    def accepts(self, event: StepEvent) -> bool:
        if self.project_ref is None or event.project_ref is None:
            return True
        return event.project_ref == self.project_ref

    def feed(self, event: StepEvent) -> bool:
        if not self.accepts(event):
            return False
        self.events.append(event)
        self.state = reduce(self.state, event)
        return True

    def reset(self) -> None:
        self.events.clear()
        self.state = ReconcilerState()

    @property
    def tasks(self) -> tuple[TaskRecord, ...]:
        return self.state.tasks

    @property
    def percent(self) -> int:
        return self.state.percent

    @property
    def current_action(self) -> str | None:
        return self.state.current_action

    @property
    def current_phase(self) -> EventPhase | None:
        return self.state.current_phase

    @property
    def last_message(self) -> str | None:
        return self.state.last_message


class EventStreamClient:
    """Reads ``data:`` frames from the server-sent event endpoint.

    There is no replay: after a reconnect the observer only sees new events
    and should re-read the session progress to catch up on coarse state.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        path: str = "/api/workflow/stream",
        config: StreamConfig | None = None,
    ) -> None:
        self._client = client
        self._path = path
        self._config = config or StreamConfig()
        self.last_error: str | None = None
        self.connections = 0

    def _decode(self, data: str) -> StepEvent | None:
        try:
            return StepEvent.model_validate_json(data)
        except ValidationError as exc:
            logger.warning("stream_event_invalid", extra={"error": str(exc)})
            return None

    async def events(self) -> AsyncIterator[StepEvent]:
        """Yield events from one connection until the server closes it."""
        params = {"projectRef": self._config.project_ref} if self._config.project_ref else None
        try:
            async with self._client.stream(
                "GET",
                self._path,
                params=params,
                headers={"Accept": "text/event-stream"},
                timeout=None,
            ) as response:
                if response.is_error:
                    raise TransportError(f"HTTP {response.status_code}", status_code=response.status_code)
                self.connections += 1
                data_lines: list[str] = []
                async for line in response.aiter_lines():
                    if not line:
                        if data_lines:
                            event = self._decode("\n".join(data_lines))
                            data_lines = []
                            if event is not None:
                                yield event
                        continue
                    if line.startswith(":"):
                        continue
                    name, _, value = line.partition(":")
                    if name == "data":
                        data_lines.append(value[1:] if value.startswith(" ") else value)
                if data_lines:
                    event = self._decode("\n".join(data_lines))
                    if event is not None:
                        yield event
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

    async def run(self, sink: Callable[[StepEvent], object]) -> None:
        """Feed ``sink`` forever, reconnecting after transport failures.

        Returns when the stream ends or fails and ``auto_reconnect`` is off;
        in that case a transport failure is re-raised.
        """
        delay_s = self._config.reconnect_delay_ms / 1000
        while True:
            try:
                async for event in self.events():
                    sink(event)
            except TransportError as exc:
                self.last_error = exc.message
                logger.warning("stream_disconnected", extra={"error": exc.message})
                if not self._config.auto_reconnect:
                    raise
            else:
                if not self._config.auto_reconnect:
                    return
            await asyncio.sleep(delay_s)


__all__ = ["EventStreamClient", "ProgressTracker"]
