"""Holder for the one session record."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from .models import SessionProgress, _utc_now

Clock = Callable[[], datetime]


class SessionStateStore:
    """Owns the single :class:`SessionProgress` and the cancellation flag.

    Every mutation swaps in a new frozen record, so a reference handed out by
    :meth:`snapshot` can never observe a half-applied change. Timestamps are
    clamped so ``updated_at`` never moves backwards even if the clock does.
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or _utc_now
        self._progress = SessionProgress()
        self._cancel_requested = False

    def snapshot(self) -> SessionProgress:
        return self._progress

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def set_cancel_requested(self, value: bool) -> None:
        self._cancel_requested = value

    def now(self) -> datetime:
        current = self._clock()
        previous = self._progress.updated_at
        if previous is not None and current < previous:
            return previous
        return current

    def replace(self, progress: SessionProgress) -> SessionProgress:
        self._progress = progress
        return progress

    def apply(self, **changes: Any) -> SessionProgress:
        self._progress = self._progress.model_copy(update=changes)
        return self._progress

    def reset(self) -> SessionProgress:
        self._cancel_requested = False
        self._progress = SessionProgress()
        return self._progress


__all__ = ["Clock", "SessionStateStore"]
