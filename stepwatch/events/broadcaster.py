"""In-memory publish/subscribe channel for step events."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any

from stepwatch.config import BroadcasterConfig, OverflowPolicy

from .models import EventPhase, StepEvent

logger = logging.getLogger("stepwatch.events")

_CLOSED = object()


class Subscription:
    """A live, bounded view of the event stream for one observer.

    Events published before the subscription was created are never replayed.
    """

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        *,
        project_ref: str | None,
        queue_size: int,
        overflow: OverflowPolicy,
    ) -> None:
        self._broadcaster = broadcaster
        self.project_ref = project_ref
        self.overflow = overflow
        self.queue: asyncio.Queue[StepEvent | object] = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def accepts(self, event: StepEvent) -> bool:
        if self.project_ref is None or event.project_ref is None:
            return True
        return event.project_ref == self.project_ref

    def deliver(self, event: StepEvent) -> None:
        if self._closed:
            return
        try:
            self.queue.put_nowait(event)
            return
        except asyncio.QueueFull:
            pass
        if self.overflow == OverflowPolicy.DISCONNECT:
            logger.warning("subscriber_disconnected", extra={"project_ref": self.project_ref})
            self.close()
            return
        try:
            self.queue.get_nowait()
            self.dropped += 1
        except asyncio.QueueEmpty:
            pass
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("subscriber_dropped_event", extra={"project_ref": self.project_ref})

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broadcaster.unsubscribe(self)
        try:
            self.queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self.queue.put_nowait(_CLOSED)

    async def get(self) -> StepEvent | None:
        """Wait for the next event; ``None`` once the subscription is closed."""
        if self._closed and self.queue.empty():
            return None
        item = await self.queue.get()
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> StepEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class EventBroadcaster:
    """Fan-out of step events to every subscriber connected at publish time.

    ``publish`` never blocks: each subscriber has its own bounded queue and a
    slow reader only loses its own events (or its connection, depending on
    the overflow policy).
    """

    def __init__(self, config: BroadcasterConfig | None = None) -> None:
        self._config = config or BroadcasterConfig()
        self._subs: list[Subscription] = []
        self._history: deque[StepEvent] = deque(maxlen=self._config.history_size)

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def history(self) -> list[StepEvent]:
        return list(self._history)

    def subscribe(
        self,
        project_ref: str | None = None,
        *,
        queue_size: int | None = None,
        overflow: OverflowPolicy | None = None,
    ) -> Subscription:
        sub = Subscription(
            self,
            project_ref=project_ref,
            queue_size=queue_size or self._config.queue_size,
            overflow=overflow or self._config.overflow,
        )
        self._subs.append(sub)
        logger.debug("subscriber_added", extra={"project_ref": project_ref, "subscribers": len(self._subs)})
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        try:
            self._subs.remove(sub)
        except ValueError:
            return
        if not sub.closed:
            sub.close()

    def publish(self, event: StepEvent) -> StepEvent:
        self._history.append(event)
        # Subscribers may close themselves while we deliver.
        for sub in tuple(self._subs):
            if sub.accepts(event):
                sub.deliver(event)
        return event

    def emit(self, phase: EventPhase, message: str = "", **fields: Any) -> StepEvent:
        """Build a timestamped event from keyword fields and publish it."""
        return self.publish(StepEvent(phase=phase, message=message, **fields))

    def close(self) -> None:
        for sub in tuple(self._subs):
            sub.close()


__all__ = ["EventBroadcaster", "Subscription"]
