"""Single-flight session controller and its phase state machine."""

from __future__ import annotations

import logging

from stepwatch.errors import InvalidTransitionError

from .models import SessionPhase, SessionProgress, StartResponse
from .store import Clock, SessionStateStore

logger = logging.getLogger("stepwatch.sessions")

_ACTIVE = (
    SessionPhase.OPENING_REMOTE,
    SessionPhase.WAITING_USER_INTERACTION,
    SessionPhase.CHECKING_SESSION,
)

# Targets reachable through update(). COMPLETED and FAILED are only entered
# through success()/fail(), which also set done/success/running.
TRANSITIONS: dict[SessionPhase, frozenset[SessionPhase]] = {
    SessionPhase.IDLE: frozenset(),
    SessionPhase.STARTING: frozenset(_ACTIVE),
    SessionPhase.OPENING_REMOTE: frozenset(
        {
            SessionPhase.WAITING_USER_INTERACTION,
            SessionPhase.CHECKING_SESSION,
            SessionPhase.PERSISTING_STATE,
        }
    ),
    SessionPhase.WAITING_USER_INTERACTION: frozenset(
        {
            SessionPhase.WAITING_USER_INTERACTION,
            SessionPhase.OPENING_REMOTE,
            SessionPhase.CHECKING_SESSION,
            SessionPhase.PERSISTING_STATE,
        }
    ),
    SessionPhase.CHECKING_SESSION: frozenset(
        {
            SessionPhase.OPENING_REMOTE,
            SessionPhase.WAITING_USER_INTERACTION,
            SessionPhase.PERSISTING_STATE,
        }
    ),
    SessionPhase.PERSISTING_STATE: frozenset(),
    SessionPhase.COMPLETED: frozenset(),
    SessionPhase.FAILED: frozenset(),
}


def can_transition(current: SessionPhase, target: SessionPhase) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class SessionController:
    """Public operations over the one session record.

    All mutations are synchronous; the automation driver is the only writer
    and HTTP handlers only read snapshots.
    """

    def __init__(self, store: SessionStateStore | None = None, *, clock: Clock | None = None) -> None:
        self._store = store or SessionStateStore(clock=clock)

    @property
    def store(self) -> SessionStateStore:
        return self._store

    def is_running(self) -> bool:
        return self._store.snapshot().running

    def get(self) -> SessionProgress:
        return self._store.snapshot().model_copy()

    def start(self, message: str = "Starting session") -> StartResponse:
        current = self._store.snapshot()
        if current.running:
            logger.info("session_already_running", extra={"phase": current.phase.value})
            return StartResponse(started=False, already_running=True)
        now = self._store.now()
        self._store.set_cancel_requested(False)
        self._store.replace(
            SessionProgress(
                phase=SessionPhase.STARTING,
                started_at=now,
                updated_at=now,
                attempts=0,
                message=message,
                done=False,
                success=False,
                running=True,
            )
        )
        logger.info("session_started", extra={"started_at": now.isoformat()})
        return StartResponse(started=True)

    def update(self, phase: SessionPhase, message: str | None = None) -> SessionProgress:
        current = self._store.snapshot()
        try:
            phase = SessionPhase(phase)
        except ValueError:
            raise InvalidTransitionError(current.phase.value, str(phase)) from None
        if not can_transition(current.phase, phase):
            raise InvalidTransitionError(current.phase.value, phase.value)
        changes: dict[str, object] = {"phase": phase, "updated_at": self._store.now()}
        if phase == current.phase:
            changes["attempts"] = current.attempts + 1
        if message:
            changes["message"] = message
        progress = self._store.apply(**changes)
        logger.debug(
            "session_transition",
            extra={"from_phase": current.phase.value, "to_phase": phase.value, "attempts": progress.attempts},
        )
        return progress

    def increment_attempt(self) -> SessionProgress:
        current = self._store.snapshot()
        if not current.running:
            return current
        return self._store.apply(attempts=current.attempts + 1, updated_at=self._store.now())

    def fail(self, error: str) -> bool:
        current = self._store.snapshot()
        if current.phase == SessionPhase.IDLE or current.done:
            return False
        self._store.apply(
            phase=SessionPhase.FAILED,
            error=error,
            done=True,
            success=False,
            running=False,
            updated_at=self._store.now(),
        )
        logger.warning("session_failed", extra={"from_phase": current.phase.value, "error": error})
        return True

    def success(self, message: str = "Session completed") -> bool:
        current = self._store.snapshot()
        if current.done:
            return False
        if current.phase != SessionPhase.PERSISTING_STATE:
            raise InvalidTransitionError(current.phase.value, SessionPhase.COMPLETED.value)
        self._store.apply(
            phase=SessionPhase.COMPLETED,
            message=message,
            done=True,
            success=True,
            running=False,
            updated_at=self._store.now(),
        )
        logger.info("session_completed", extra={"attempts": current.attempts})
        return True

    def request_cancel(self) -> bool:
        if not self._store.snapshot().running:
            return False
        self._store.set_cancel_requested(True)
        logger.info("session_cancel_requested")
        return True

    def was_cancel_requested(self) -> bool:
        return self._store.cancel_requested

    def reset(self) -> SessionProgress:
        return self._store.reset()


__all__ = ["SessionController", "TRANSITIONS", "can_transition"]
