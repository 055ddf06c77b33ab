"""Error taxonomy shared by the server, the runner and the clients."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class ProblemDetails(BaseModel):
    type: str
    title: str
    status: int
    detail: str | None = None
    instance: str | None = None

    model_config = ConfigDict(extra="allow")


class StepwatchError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        type_uri: str,
        title: str,
        detail: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.type_uri = type_uri
        self.title = title
        self.detail = detail
        self.extra = extra or {}

    def to_problem_details(self) -> ProblemDetails:
        payload: dict[str, Any] = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }
        if self.detail:
            payload["detail"] = self.detail
        if self.extra:
            payload.update(self.extra)
        return ProblemDetails.model_validate(payload)


class StartValidationError(StepwatchError):
    """Start request rejected before any session state was touched."""

    def __init__(self, detail: str, *, status_code: int = 422) -> None:
        super().__init__(
            status_code=status_code,
            type_uri="urn:stepwatch:errors:invalid-start-request",
            title="Invalid start request",
            detail=detail,
        )


class InvalidTransitionError(StepwatchError):
    """A phase change that the session state machine does not allow."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            status_code=409,
            type_uri="urn:stepwatch:errors:invalid-transition",
            title="Invalid phase transition",
            detail=f"Cannot move session from {current} to {target}.",
            extra={"current": current, "target": target},
        )
        self.current = current
        self.target = target


class DriverFailure(StepwatchError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=500,
            type_uri="urn:stepwatch:errors:driver-failure",
            title="Automation driver failed",
            detail=detail,
        )


class CancellationAcknowledged(Exception):
    """Raised at a driver checkpoint once cancellation has been requested."""

    def __init__(self, message: str = "Cancelled by user") -> None:
        super().__init__(message)
        self.message = message


class TransportError(Exception):
    """Client-side failure talking to the server; says nothing about server state."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


__all__ = [
    "CancellationAcknowledged",
    "DriverFailure",
    "InvalidTransitionError",
    "ProblemDetails",
    "StartValidationError",
    "StepwatchError",
    "TransportError",
]
