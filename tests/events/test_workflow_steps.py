from __future__ import annotations

import itertools

import pytest

from stepwatch.errors import CancellationAcknowledged
from stepwatch.events import EventBroadcaster, EventPhase, StepOutcome, WorkflowStep, fold, run_steps


def _drain(subscription) -> list:
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


def _ticks():
    counter = itertools.count()
    return lambda: next(counter) * 0.25


async def _ok() -> StepOutcome:
    return StepOutcome(message="fine")


async def _bad() -> StepOutcome:
    return StepOutcome(success=False, message="row missing")


async def _raises() -> None:
    raise RuntimeError("page crashed")


@pytest.mark.asyncio
async def test_run_steps_publishes_plan_and_step_taxonomy() -> None:
    broadcaster = EventBroadcaster()
    sub = broadcaster.subscribe()
    steps = [
        WorkflowStep("open", _ok),
        WorkflowStep("extract", _ok, enabled=False),
        WorkflowStep("upload", _ok, params={"folder": "inbox"}),
    ]

    summary = await run_steps(broadcaster, steps, project_ref="proj-1", clock=_ticks())

    events = _drain(sub)
    phases = [(event.action, event.phase.value) for event in events]
    assert phases == [
        ("workflow", "start"),
        ("workflow", "plan"),
        ("open", "start"),
        ("open", "success"),
        ("extract", "skip"),
        ("upload", "start"),
        ("upload", "success"),
        ("workflow", "success"),
    ]
    plan = events[1]
    assert plan.extra == {
        "tasks": [{"action": "open", "stepIndex": 0}, {"action": "upload", "stepIndex": 2}],
        "totalTasks": 2,
    }
    assert all(event.project_ref == "proj-1" for event in events)
    assert events[3].duration_ms == 250.0
    assert events[5].extra == {"params": {"folder": "inbox"}}
    assert events[-1].extra == {"summary": {"total": 2, "successful": 2, "failed": 0, "skipped": 1}}
    assert summary.successful == 2
    assert summary.stopped is False

    state = fold(events)
    assert state.percent == 100
    assert [task.id for task in state.tasks] == ["open-0", "upload-2"]


@pytest.mark.asyncio
async def test_stop_on_error_publishes_stop_event_and_no_workflow_success() -> None:
    broadcaster = EventBroadcaster()
    sub = broadcaster.subscribe()
    steps = [WorkflowStep("open", _ok), WorkflowStep("extract", _bad), WorkflowStep("upload", _ok)]

    summary = await run_steps(broadcaster, steps)

    events = _drain(sub)
    assert [(event.action, event.phase.value, event.message) for event in events[-2:]] == [
        ("extract", "error", "row missing"),
        ("workflow", "error", "Stopped after error"),
    ]
    assert summary.failed == 1
    assert summary.stopped is True
    assert not any(event.action == "upload" for event in events)
    state = fold(events)
    assert state.workflow_failed is True
    assert state.percent == 66


@pytest.mark.asyncio
async def test_continue_on_error_and_step_exceptions() -> None:
    broadcaster = EventBroadcaster()
    sub = broadcaster.subscribe()
    steps = [WorkflowStep("open", _raises), WorkflowStep("upload", _ok)]

    summary = await run_steps(broadcaster, steps, stop_on_error=False)

    events = _drain(sub)
    error = next(event for event in events if event.action == "open" and event.phase is EventPhase.ERROR)
    assert error.message == "page crashed"
    assert summary.failed == 1
    assert summary.successful == 1
    assert events[-1].action == "workflow"
    assert events[-1].phase is EventPhase.SUCCESS


@pytest.mark.asyncio
async def test_cancel_between_steps_raises_acknowledgement() -> None:
    broadcaster = EventBroadcaster()
    sub = broadcaster.subscribe()
    flag = {"cancel": False}

    async def first() -> None:
        flag["cancel"] = True

    steps = [WorkflowStep("open", first), WorkflowStep("extract", _ok)]
    with pytest.raises(CancellationAcknowledged):
        await run_steps(broadcaster, steps, should_cancel=lambda: flag["cancel"])

    events = _drain(sub)
    last = events[-1]
    assert (last.action, last.phase, last.message) == ("workflow", EventPhase.ERROR, "Cancelled by user")
    assert not any(event.action == "extract" for event in events)
