"""Adaptive polling of the session progress endpoint.

The poller is the fallback for observers that cannot (or did not) attach to
the event stream. After an immediate first read it waits
``initial_interval_ms`` and then grows the wait by ``backoff_factor`` up to
``max_interval_ms``. Only :meth:`ClientProgressPoller.start` resets it.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from stepwatch.config import PollerConfig
from stepwatch.errors import TransportError
from stepwatch.sessions.models import SessionProgress, SessionStatus, StartRequest, StartResponse

logger = logging.getLogger("stepwatch.client")

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: float, callback: TimerCallback) -> TimerHandle: ...


class ProgressSource(Protocol):
    async def get_progress(self) -> SessionProgress: ...

    async def get_status(self) -> SessionStatus: ...

    async def start(self, request: StartRequest | None = None) -> StartResponse: ...


class _AsyncioTimer:
    def __init__(self, loop: asyncio.AbstractEventLoop, delay_ms: float, callback: TimerCallback) -> None:
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._handle = loop.call_later(delay_ms / 1000, self._fire)

    def _fire(self) -> None:
        self._task = asyncio.ensure_future(self._callback())
        self._task.add_done_callback(_log_task_failure)

    def cancel(self) -> None:
        self._handle.cancel()


def _log_task_failure(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("timer_callback_failed", exc_info=exc)


class AsyncioScheduler:
    def call_later(self, delay_ms: float, callback: TimerCallback) -> TimerHandle:
        return _AsyncioTimer(asyncio.get_running_loop(), delay_ms, callback)


def next_interval(current_ms: float, factor: float, max_ms: float) -> float:
    return min(current_ms * factor, max_ms)


class ClientProgressPoller:
    """Polls :class:`ProgressSource` until the session reports ``done``.

    At most one poll timer is pending at any time. ``stop()`` bumps the run
    generation, so a poll that is already awaiting the server when the run is
    stopped (or restarted) will not reschedule itself.
    """

    def __init__(
        self,
        source: ProgressSource,
        config: PollerConfig | None = None,
        *,
        scheduler: Scheduler | None = None,
        on_change: Callable[[ClientProgressPoller], None] | None = None,
    ) -> None:
        self._source = source
        self._config = config or PollerConfig()
        self._scheduler = scheduler or AsyncioScheduler()
        self._on_change = on_change
        self._timer: TimerHandle | None = None
        self._finish_timer: TimerHandle | None = None
        self._generation = 0
        self._stopped = True

        self.progress: SessionProgress | None = None
        self.status: SessionStatus | None = None
        self.running = False
        self.error: str | None = None
        self.already_running = False
        self.interval_ms = self._config.initial_interval_ms

    @property
    def config(self) -> PollerConfig:
        return self._config

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)

    def _cancel_timers(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._finish_timer is not None:
            self._finish_timer.cancel()
            self._finish_timer = None

    def _is_current(self, generation: int) -> bool:
        return not self._stopped and generation == self._generation

    async def start(self, request: StartRequest | None = None, *, launch: bool = True) -> StartResponse | None:
        """Reset the backoff and poll immediately, optionally asking the server to start first."""
        self._cancel_timers()
        self._generation += 1
        self._stopped = False
        self.interval_ms = self._config.initial_interval_ms
        self.error = None
        self.progress = None
        self.already_running = False

        result: StartResponse | None = None
        if launch:
            generation = self._generation
            try:
                result = await self._source.start(request)
            except TransportError as exc:
                if generation == self._generation:
                    self._surface_error(exc)
                return None
            if generation != self._generation:
                return result
            self.already_running = bool(result.already_running)
        self.running = True
        self._notify()
        await self.poll()
        return result

    async def poll(self) -> None:
        generation = self._generation
        if not self._is_current(generation):
            return
        if self._timer is not None:
            # Either this poll is the timer firing or a manual poll replaces it.
            self._timer.cancel()
            self._timer = None
        try:
            progress = await self._source.get_progress()
        except TransportError as exc:
            if self._is_current(generation):
                self._surface_error(exc)
            return
        if not self._is_current(generation):
            return
        self.progress = progress
        self._notify()

        if progress.done:
            await self._finalize(generation)
            return

        delay = self.interval_ms
        self.interval_ms = next_interval(delay, self._config.backoff_factor, self._config.max_interval_ms)
        self._schedule(delay)

    def _schedule(self, delay_ms: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._scheduler.call_later(delay_ms, functools.partial(self._run_guarded, self.poll))
        logger.debug("poll_scheduled", extra={"delay_ms": delay_ms})

    async def _finalize(self, generation: int) -> None:
        self._cancel_timers()
        try:
            self.status = await self._source.get_status()
        except TransportError as exc:
            self.error = exc.message
        if not self._is_current(generation):
            return
        self._notify()
        finish = functools.partial(self._mark_finished, generation)
        self._finish_timer = self._scheduler.call_later(
            self._config.stop_on_success_delay_ms,
            functools.partial(self._run_guarded, finish),
        )

    async def _mark_finished(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._finish_timer = None
        self.running = False
        self._stopped = True
        self._notify()

    async def _run_guarded(self, callback: TimerCallback) -> None:
        """Run a timer callback; unexpected failures end the run with ``error`` set."""
        try:
            await callback()
        except Exception as exc:
            logger.exception("poll_callback_failed")
            self._cancel_timers()
            self._stopped = True
            self.error = str(exc) or type(exc).__name__
            self.running = False
            self._notify()

    def _surface_error(self, exc: TransportError) -> None:
        logger.warning("poll_failed", extra={"error": exc.message, "status_code": exc.status_code})
        self._cancel_timers()
        self._stopped = True
        self.error = exc.message
        self.running = False
        self._notify()

    def stop(self) -> None:
        self._stopped = True
        self._generation += 1
        self._cancel_timers()
        self.running = False
        self._notify()


__all__ = [
    "AsyncioScheduler",
    "ClientProgressPoller",
    "ProgressSource",
    "Scheduler",
    "TimerHandle",
    "next_interval",
]
