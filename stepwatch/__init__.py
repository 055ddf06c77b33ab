"""Public package surface for stepwatch."""

from __future__ import annotations

from .config import (
    BroadcasterConfig,
    OverflowPolicy,
    PollerConfig,
    SessionConfig,
    StepwatchSettings,
    StreamConfig,
)
from .errors import (
    CancellationAcknowledged,
    DriverFailure,
    InvalidTransitionError,
    StartValidationError,
    StepwatchError,
    TransportError,
)
from .events import EventBroadcaster, EventPhase, StepEvent, fold, reduce, run_steps
from .sessions import (
    AutomationDriver,
    DriverContext,
    SessionController,
    SessionPhase,
    SessionProgress,
    SessionRunner,
    StateFiles,
)

__all__ = [
    "__version__",
    "AutomationDriver",
    "BroadcasterConfig",
    "CancellationAcknowledged",
    "DriverContext",
    "DriverFailure",
    "EventBroadcaster",
    "EventPhase",
    "InvalidTransitionError",
    "OverflowPolicy",
    "PollerConfig",
    "SessionConfig",
    "SessionController",
    "SessionPhase",
    "SessionProgress",
    "SessionRunner",
    "StartValidationError",
    "StateFiles",
    "StepEvent",
    "StepwatchError",
    "StepwatchSettings",
    "StreamConfig",
    "TransportError",
    "fold",
    "reduce",
    "run_steps",
]

__version__ = "0.1.0"
