"""Run an ordered list of steps and publish the step-event taxonomy for it."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from stepwatch.errors import CancellationAcknowledged

from .broadcaster import EventBroadcaster
from .models import WORKFLOW_ACTION, EventPhase

logger = logging.getLogger("stepwatch.events")


@dataclass(slots=True)
class StepOutcome:
    success: bool = True
    message: str | None = None


StepCallable = Callable[[], Awaitable[StepOutcome | None]]


@dataclass(slots=True)
class WorkflowStep:
    action: str
    run: StepCallable
    enabled: bool = True
    params: dict[str, Any] | None = None


@dataclass(slots=True)
class StepResult:
    action: str
    step_index: int
    success: bool
    message: str | None = None
    duration_ms: float = 0.0


@dataclass(slots=True)
class WorkflowSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    stopped: bool = False
    results: list[StepResult] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
        }


async def run_steps(
    broadcaster: EventBroadcaster,
    steps: Sequence[WorkflowStep],
    *,
    project_ref: str | None = None,
    stop_on_error: bool = True,
    should_cancel: Callable[[], bool] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> WorkflowSummary:
    """Execute ``steps`` in order, publishing plan/start/success/error/skip events.

    ``should_cancel`` is checked before every step; when it returns true a
    ``error@workflow`` event is published and :class:`CancellationAcknowledged`
    is raised so the caller can end the session. The closing
    ``success@workflow`` event is only published when the run was not
    stopped by an error.
    """
    total_steps = len(steps)
    summary = WorkflowSummary(total=sum(1 for step in steps if step.enabled))

    def _emit(phase: EventPhase, message: str, **fields: Any) -> None:
        broadcaster.emit(phase, message, project_ref=project_ref, **fields)

    _emit(EventPhase.START, "Starting workflow", action=WORKFLOW_ACTION, extra={"total": total_steps})
    plan = [{"action": step.action, "stepIndex": idx} for idx, step in enumerate(steps) if step.enabled]
    _emit(
        EventPhase.PLAN,
        "Workflow plan computed",
        action=WORKFLOW_ACTION,
        extra={"tasks": plan, "totalTasks": len(plan)},
    )

    for idx, step in enumerate(steps):
        position = {"action": step.action, "step_index": idx, "total_steps": total_steps}
        if not step.enabled:
            summary.skipped += 1
            _emit(EventPhase.SKIP, "Step skipped", **position)
            continue
        if should_cancel is not None and should_cancel():
            _emit(EventPhase.ERROR, "Cancelled by user", action=WORKFLOW_ACTION, step_index=idx)
            raise CancellationAcknowledged()

        _emit(EventPhase.START, "Starting step", extra={"params": step.params or {}}, **position)
        started = clock()
        try:
            outcome = await step.run() or StepOutcome()
        except CancellationAcknowledged:
            raise
        except Exception as exc:
            logger.warning("workflow_step_raised", extra={"action": step.action, "step_index": idx, "error": str(exc)})
            outcome = StepOutcome(success=False, message=str(exc) or exc.__class__.__name__)
        duration_ms = round((clock() - started) * 1000, 3)
        summary.results.append(
            StepResult(
                action=step.action,
                step_index=idx,
                success=outcome.success,
                message=outcome.message,
                duration_ms=duration_ms,
            )
        )

        if outcome.success:
            summary.successful += 1
            _emit(
                EventPhase.SUCCESS,
                "Step completed",
                duration_ms=duration_ms,
                extra={"message": outcome.message},
                **position,
            )
            continue

        summary.failed += 1
        _emit(EventPhase.ERROR, outcome.message or "Error", duration_ms=duration_ms, **position)
        if stop_on_error:
            summary.stopped = True
            _emit(EventPhase.ERROR, "Stopped after error", action=WORKFLOW_ACTION, step_index=idx)
            break

    if not summary.stopped:
        _emit(EventPhase.SUCCESS, "Workflow finished", action=WORKFLOW_ACTION, extra={"summary": summary.as_dict()})
    logger.info("workflow_finished", extra=summary.as_dict())
    return summary


__all__ = ["StepOutcome", "StepResult", "WorkflowStep", "WorkflowSummary", "run_steps"]
