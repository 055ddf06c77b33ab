"""Boundary between the automation driver and the session controller.

The driver is an external collaborator: it drives the remote UI, calls
:class:`DriverContext` to report phases and step events, and calls
:meth:`DriverContext.checkpoint` wherever it is safe to stop. Cancellation is
cooperative, so the latency of a cancel request is bounded by the gap between
two checkpoints and never interrupts an in-flight remote operation.

Whatever the driver raises is caught here and turned into ``fail()``; nothing
escapes to the host process.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import ValidationError

from stepwatch.errors import CancellationAcknowledged, DriverFailure, StartValidationError
from stepwatch.events.broadcaster import EventBroadcaster
from stepwatch.events.models import EventPhase, StepEvent
from stepwatch.events.workflow import WorkflowStep, WorkflowSummary, run_steps

from .controller import SessionController
from .credentials import CredentialStore
from .models import Credentials, SessionPhase, SessionProgress, StartRequest, StartResponse
from .state_files import StateFiles

logger = logging.getLogger("stepwatch.sessions")

CANCELLED_MESSAGE = "Cancelled by user"
UNFINISHED_MESSAGE = "Automation finished without persisting session state"


class CancellationToken:
    """Read-only view of the controller's cooperative cancel flag."""

    def __init__(self, controller: SessionController) -> None:
        self._controller = controller

    @property
    def requested(self) -> bool:
        return self._controller.was_cancel_requested()

    def raise_if_requested(self, message: str = CANCELLED_MESSAGE) -> None:
        if self.requested:
            raise CancellationAcknowledged(message)


@dataclass(slots=True)
class DriverContext:
    controller: SessionController
    broadcaster: EventBroadcaster
    token: CancellationToken
    credentials: Credentials | None = None
    target: str | None = None
    headless: bool = True
    project_ref: str | None = None
    state_files: StateFiles | None = None

    def update(self, phase: SessionPhase, message: str | None = None) -> SessionProgress:
        return self.controller.update(phase, message)

    def increment_attempt(self) -> SessionProgress:
        return self.controller.increment_attempt()

    def checkpoint(self) -> None:
        self.token.raise_if_requested()

    def emit(self, phase: EventPhase, message: str = "", **fields: Any) -> StepEvent:
        fields.setdefault("project_ref", self.project_ref)
        return self.broadcaster.emit(phase, message, **fields)

    async def run_steps(self, steps: Sequence[WorkflowStep], *, stop_on_error: bool = True) -> WorkflowSummary:
        """Run ``steps`` under this session, stopping at the first step boundary after a cancel."""
        return await run_steps(
            self.broadcaster,
            steps,
            project_ref=self.project_ref,
            stop_on_error=stop_on_error,
            should_cancel=lambda: self.token.requested,
        )


class AutomationDriver(Protocol):
    async def run(self, context: DriverContext) -> None: ...


class SessionRunner:
    """Starts the driver for a new session and normalises how it ends."""

    def __init__(
        self,
        controller: SessionController,
        broadcaster: EventBroadcaster,
        driver: AutomationDriver,
        *,
        credential_store: CredentialStore | None = None,
        state_files: StateFiles | None = None,
        require_credentials: bool = False,
    ) -> None:
        self._controller = controller
        self._broadcaster = broadcaster
        self._driver = driver
        self._credential_store = credential_store
        self._state_files = state_files
        self._require_credentials = require_credentials
        self._handle: asyncio.Task[None] | None = None

    @property
    def controller(self) -> SessionController:
        return self._controller

    @property
    def broadcaster(self) -> EventBroadcaster:
        return self._broadcaster

    @property
    def state_files(self) -> StateFiles | None:
        return self._state_files

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._handle

    async def launch(self, request: StartRequest | None = None) -> StartResponse:
        request = request or StartRequest()
        try:
            supplied = request.credentials()
        except ValidationError as exc:
            raise StartValidationError("email and password are both required") from exc
        credentials = supplied
        if credentials is None and self._credential_store is not None:
            credentials = await self._credential_store.retrieve()
        if credentials is None and self._require_credentials:
            raise StartValidationError("credentials are required to start a session")

        result = self._controller.start()
        if not result.started:
            return result
        if supplied is not None and self._credential_store is not None:
            await self._credential_store.save(supplied)

        context = DriverContext(
            controller=self._controller,
            broadcaster=self._broadcaster,
            token=CancellationToken(self._controller),
            credentials=credentials,
            target=request.target,
            headless=request.headless,
            project_ref=request.target,
            state_files=self._state_files,
        )
        self._handle = asyncio.create_task(self._drive(context), name="stepwatch:session")
        logger.info("driver_launched", extra={"target": request.target, "headless": request.headless})
        return result

    async def _drive(self, context: DriverContext) -> None:
        try:
            await self._driver.run(context)
        except CancellationAcknowledged as exc:
            logger.info("driver_cancelled", extra={"reason": exc.message})
            self._controller.fail(exc.message)
        except asyncio.CancelledError:
            self._controller.fail("Session task cancelled")
            raise
        except DriverFailure as exc:
            logger.warning("driver_failed", extra={"error": exc.detail})
            self._controller.fail(exc.detail or exc.title)
        except Exception as exc:
            logger.exception("driver_crashed")
            self._controller.fail(str(exc) or exc.__class__.__name__)
        else:
            self._settle()

    def _settle(self) -> None:
        progress = self._controller.get()
        if progress.done:
            return
        if progress.phase == SessionPhase.PERSISTING_STATE:
            self._controller.success()
        elif self._controller.was_cancel_requested():
            self._controller.fail(CANCELLED_MESSAGE)
        else:
            self._controller.fail(UNFINISHED_MESSAGE)

    async def wait(self) -> None:
        if self._handle is not None:
            with suppress(asyncio.CancelledError):
                await self._handle

    async def close(self) -> None:
        handle = self._handle
        if handle is None or handle.done():
            return
        handle.cancel()
        with suppress(asyncio.CancelledError):
            await handle


__all__ = [
    "AutomationDriver",
    "CANCELLED_MESSAGE",
    "CancellationToken",
    "DriverContext",
    "SessionRunner",
    "UNFINISHED_MESSAGE",
]
