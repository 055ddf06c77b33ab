"""Fold a step-event stream into a display-ready task list.

Everything here is pure: :func:`reduce` takes the previous state and one
event and returns a new state, without I/O or clocks. Observers keep their
own state and feed it whatever events they have seen, in order.

Rules, in the order they are applied to each event:

* A ``plan`` event carrying ``extra.tasks`` re-seeds the list in plan order.
  Records whose id already exists keep their status.
* Before a plan arrives any event for an action may create a task. After
  it, only a ``stepIndex`` beyond the planned range may.
* Updates are matched by id (``"{action}-{stepIndex}"``). Terminal records
  ignore all later events.
* Without a plan and without a ``stepIndex``, a ``start`` opens a new
  occurrence of the action and other phases go to its first non-terminal
  record (opening one if none is left).
* Percent is capped at 99 until the workflow-level success event arrives.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum

from .models import EventPhase, PlanItem, StepEvent


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIP = "skip"


TERMINAL_STATUSES = frozenset({TaskStatus.SUCCESS, TaskStatus.ERROR, TaskStatus.SKIP})


@dataclass(frozen=True, slots=True)
class TaskRecord:
    id: str
    action: str
    step_index: int
    status: TaskStatus = TaskStatus.PENDING
    message: str | None = None
    duration_ms: float | None = None
    display: str = ""

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True, slots=True)
class ReconcilerState:
    tasks: tuple[TaskRecord, ...] = ()
    plan_received: bool = False
    finished: bool = False
    workflow_failed: bool = False
    current_action: str | None = None
    current_phase: EventPhase | None = None
    last_message: str | None = None

    @property
    def total_tasks(self) -> int:
        return len(self.tasks)

    @property
    def percent(self) -> int:
        return compute_percent(self.tasks, finished=self.finished)

    def task(self, task_id: str) -> TaskRecord | None:
        for record in self.tasks:
            if record.id == task_id:
                return record
        return None


def task_id_for(action: str, step_index: int) -> str:
    return f"{action}-{step_index}"


def display_label(action: str, occurrence: int) -> str:
    return action if occurrence <= 1 else f"{action} #{occurrence}"


def compute_percent(tasks: Iterable[TaskRecord], *, finished: bool) -> int:
    if finished:
        return 100
    records = list(tasks)
    if not records:
        return 0
    done = sum(1 for record in records if record.terminal)
    return min(99, (100 * done) // len(records))


def _seed_plan(plan: list[PlanItem], previous: tuple[TaskRecord, ...]) -> list[TaskRecord]:
    existing = {record.id: record for record in previous}
    counters: dict[str, int] = {}
    seeded: list[TaskRecord] = []
    seen: set[str] = set()
    for item in plan:
        record_id = task_id_for(item.action, item.step_index)
        if record_id in seen:
            continue
        seen.add(record_id)
        counters[item.action] = counters.get(item.action, 0) + 1
        label = display_label(item.action, counters[item.action])
        prior = existing.get(record_id)
        if prior is not None:
            seeded.append(replace(prior, display=label))
        else:
            seeded.append(
                TaskRecord(id=record_id, action=item.action, step_index=item.step_index, display=label)
            )
    return seeded


def _advance(record: TaskRecord, event: StepEvent) -> TaskRecord:
    if record.terminal:
        return record
    if event.phase == EventPhase.START:
        return replace(record, status=TaskStatus.RUNNING)
    if event.phase == EventPhase.SUCCESS:
        return replace(record, status=TaskStatus.SUCCESS, message=event.message, duration_ms=event.duration_ms)
    if event.phase == EventPhase.ERROR:
        duration = event.duration_ms if event.duration_ms is not None else record.duration_ms
        return replace(record, status=TaskStatus.ERROR, message=event.message, duration_ms=duration)
    if event.phase == EventPhase.SKIP:
        return replace(record, status=TaskStatus.SKIP, message=event.message)
    return record


def _synthesized_id(action: str, occurrence: int, taken: set[str]) -> str:
    candidate = f"{action}-dyn-{occurrence}"
    while candidate in taken:
        occurrence += 1
        candidate = f"{action}-dyn-{occurrence}"
    return candidate


def _append(tasks: list[TaskRecord], action: str, event: StepEvent, key: str | None) -> int:
    occurrence = sum(1 for record in tasks if record.action == action) + 1
    record_id = key or _synthesized_id(action, occurrence, {record.id for record in tasks})
    step_index = event.step_index if event.step_index is not None else len(tasks)
    tasks.append(
        TaskRecord(
            id=record_id,
            action=action,
            step_index=step_index,
            display=display_label(action, occurrence),
        )
    )
    return len(tasks) - 1


def _apply_task_event(
    tasks: list[TaskRecord], action: str, event: StepEvent, plan_received: bool
) -> list[TaskRecord]:
    if event.step_index is None:
        if plan_received:
            return tasks
        index = None
        if event.phase != EventPhase.START:
            index = next(
                (i for i, record in enumerate(tasks) if record.action == action and not record.terminal),
                None,
            )
        if index is None:
            index = _append(tasks, action, event, None)
        tasks[index] = _advance(tasks[index], event)
        return tasks

    key = task_id_for(action, event.step_index)
    index = next((i for i, record in enumerate(tasks) if record.id == key), None)
    if index is None:
        highest = max((record.step_index for record in tasks), default=-1)
        if plan_received and event.step_index <= highest:
            return tasks
        index = _append(tasks, action, event, key)
    tasks[index] = _advance(tasks[index], event)
    return tasks


def reduce(state: ReconcilerState, event: StepEvent) -> ReconcilerState:
    """Return the state after applying ``event``; ``state`` is left untouched."""
    tasks = list(state.tasks)
    plan_received = state.plan_received
    finished = state.finished
    workflow_failed = state.workflow_failed

    plan = event.plan()
    if plan is not None:
        tasks = _seed_plan(plan, state.tasks)
        plan_received = True

    if event.is_workflow:
        if event.phase == EventPhase.START:
            finished = False
            workflow_failed = False
        elif event.phase == EventPhase.SUCCESS:
            finished = True
        elif event.phase == EventPhase.ERROR:
            workflow_failed = True
    elif event.action and event.phase != EventPhase.PLAN:
        tasks = _apply_task_event(tasks, event.action, event, plan_received)

    return ReconcilerState(
        tasks=tuple(tasks),
        plan_received=plan_received,
        finished=finished,
        workflow_failed=workflow_failed,
        current_action=event.action,
        current_phase=event.phase,
        last_message=event.message,
    )


def fold(events: Iterable[StepEvent], state: ReconcilerState | None = None) -> ReconcilerState:
    current = state or ReconcilerState()
    for event in events:
        current = reduce(current, event)
    return current


def format_duration(ms: float | None) -> str:
    if ms is None:
        return ""
    if ms < 1000:
        return f"{round(ms)}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s" if seconds < 10 else f"{seconds:.0f}s"
    minutes, rest = divmod(round(seconds), 60)
    return f"{minutes}m{rest}s" if rest else f"{minutes}m"


__all__ = [
    "ReconcilerState",
    "TERMINAL_STATUSES",
    "TaskRecord",
    "TaskStatus",
    "compute_percent",
    "display_label",
    "fold",
    "format_duration",
    "reduce",
    "task_id_for",
]
