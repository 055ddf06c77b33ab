"""Step events: models, broadcast channel and the task reconciler."""

from .broadcaster import EventBroadcaster, Subscription
from .models import WORKFLOW_ACTION, EventPhase, PlanItem, StepEvent
from .reconciler import (
    ReconcilerState,
    TaskRecord,
    TaskStatus,
    compute_percent,
    fold,
    format_duration,
    reduce,
)
from .workflow import StepOutcome, WorkflowStep, WorkflowSummary, run_steps

__all__ = [
    "EventBroadcaster",
    "EventPhase",
    "PlanItem",
    "ReconcilerState",
    "StepEvent",
    "StepOutcome",
    "Subscription",
    "TaskRecord",
    "TaskStatus",
    "WORKFLOW_ACTION",
    "WorkflowStep",
    "WorkflowSummary",
    "compute_percent",
    "fold",
    "format_duration",
    "reduce",
    "run_steps",
]
