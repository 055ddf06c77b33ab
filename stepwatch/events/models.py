"""Step event models pushed to live observers."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import Field, ValidationError

from stepwatch.types import WireModel

WORKFLOW_ACTION = "workflow"


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventPhase(str, Enum):
    PLAN = "plan"
    START = "start"
    SUCCESS = "success"
    ERROR = "error"
    SKIP = "skip"
    INFO = "info"
    DELAY = "delay"


class PlanItem(WireModel):
    action: str
    step_index: int


class StepEvent(WireModel):
    timestamp: int = Field(default_factory=_now_ms)
    project_ref: str | None = None
    step_index: int | None = None
    total_steps: int | None = None
    action: str | None = None
    phase: EventPhase
    message: str = ""
    duration_ms: float | None = None
    extra: dict[str, Any] | None = None

    @property
    def is_workflow(self) -> bool:
        return self.action == WORKFLOW_ACTION

    def plan(self) -> list[PlanItem] | None:
        """Return the ordered plan carried in ``extra.tasks``, if any."""
        if self.phase != EventPhase.PLAN or not self.extra:
            return None
        raw = self.extra.get("tasks")
        if not isinstance(raw, list):
            return None
        items: list[PlanItem] = []
        for entry in raw:
            if isinstance(entry, PlanItem):
                items.append(entry)
            elif isinstance(entry, dict):
                try:
                    items.append(PlanItem.model_validate(entry))
                except ValidationError:
                    continue
        return items


__all__ = ["EventPhase", "PlanItem", "StepEvent", "WORKFLOW_ACTION"]
