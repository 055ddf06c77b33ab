"""Session progress models shared by the controller, the HTTP app and the clients."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import ConfigDict, Field

from stepwatch.types import WireModel


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SessionPhase(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    OPENING_REMOTE = "OPENING_REMOTE"
    WAITING_USER_INTERACTION = "WAITING_USER_INTERACTION"
    CHECKING_SESSION = "CHECKING_SESSION"
    PERSISTING_STATE = "PERSISTING_STATE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (SessionPhase.COMPLETED, SessionPhase.FAILED)


class SessionProgress(WireModel):
    """Immutable point-in-time view of the single session.

    ``running`` is kept alongside the record but is not part of the wire
    payload; clients derive their own notion of running from polling.
    """

    model_config = ConfigDict(frozen=True)

    phase: SessionPhase = SessionPhase.IDLE
    started_at: datetime | None = None
    updated_at: datetime | None = None
    attempts: int = 0
    message: str | None = None
    error: str | None = None
    done: bool = False
    success: bool = False
    running: bool = Field(default=False, exclude=True)


class SessionStatus(WireModel):
    logged_in: bool
    has_state: bool
    last_login: datetime | None = None
    hours_age: float | None = None


class Credentials(WireModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    secondary_password: str | None = None


class StartRequest(WireModel):
    email: str | None = None
    password: str | None = None
    secondary_password: str | None = None
    target: str | None = None
    headless: bool = True

    def credentials(self) -> Credentials | None:
        if self.email is None and self.password is None:
            return None
        return Credentials(
            email=self.email or "",
            password=self.password or "",
            secondary_password=self.secondary_password,
        )


class StartResponse(WireModel):
    started: bool
    already_running: bool | None = None


class CancelResponse(WireModel):
    success: bool
    message: str


class ClearSessionResponse(WireModel):
    success: bool
    message: str


__all__ = [
    "CancelResponse",
    "ClearSessionResponse",
    "Credentials",
    "SessionPhase",
    "SessionProgress",
    "SessionStatus",
    "StartRequest",
    "StartResponse",
]
