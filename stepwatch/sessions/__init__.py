"""Single-session lifecycle: state, controller and the driver boundary."""

from .controller import TRANSITIONS, SessionController, can_transition
from .credentials import CredentialStore, InMemoryCredentialStore
from .models import (
    CancelResponse,
    ClearSessionResponse,
    Credentials,
    SessionPhase,
    SessionProgress,
    SessionStatus,
    StartRequest,
    StartResponse,
)
from .runner import CANCELLED_MESSAGE, AutomationDriver, CancellationToken, DriverContext, SessionRunner
from .state_files import StateFiles
from .store import SessionStateStore

__all__ = [
    "AutomationDriver",
    "CANCELLED_MESSAGE",
    "CancelResponse",
    "CancellationToken",
    "ClearSessionResponse",
    "CredentialStore",
    "Credentials",
    "DriverContext",
    "InMemoryCredentialStore",
    "SessionController",
    "SessionPhase",
    "SessionProgress",
    "SessionRunner",
    "SessionStateStore",
    "SessionStatus",
    "StartRequest",
    "StartResponse",
    "StateFiles",
    "TRANSITIONS",
    "can_transition",
]
