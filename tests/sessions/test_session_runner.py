from __future__ import annotations

import asyncio
import json

import pytest

from stepwatch.errors import DriverFailure, StartValidationError
from stepwatch.events import EventBroadcaster, EventPhase
from stepwatch.sessions import (
    CANCELLED_MESSAGE,
    Credentials,
    DriverContext,
    InMemoryCredentialStore,
    SessionController,
    SessionPhase,
    SessionRunner,
    StartRequest,
    StateFiles,
)
from stepwatch.sessions.runner import UNFINISHED_MESSAGE


class ScriptedDriver:
    """Driver whose body is supplied by the test."""

    def __init__(self, body) -> None:
        self.body = body
        self.contexts: list[DriverContext] = []

    async def run(self, context: DriverContext) -> None:
        self.contexts.append(context)
        await self.body(context)


def _runner(body, **kwargs) -> tuple[SessionRunner, ScriptedDriver]:
    driver = ScriptedDriver(body)
    runner = SessionRunner(SessionController(), EventBroadcaster(), driver, **kwargs)
    return runner, driver


async def _happy(context: DriverContext) -> None:
    context.update(SessionPhase.OPENING_REMOTE, "Opening")
    context.checkpoint()
    context.update(SessionPhase.CHECKING_SESSION)
    context.update(SessionPhase.PERSISTING_STATE, "Saving state")


@pytest.mark.asyncio
async def test_driver_reaching_persisting_state_completes_session() -> None:
    runner, _ = _runner(_happy)
    result = await runner.launch()
    assert result.started is True
    await runner.wait()

    progress = runner.controller.get()
    assert progress.phase is SessionPhase.COMPLETED
    assert progress.success is True
    assert progress.done is True


@pytest.mark.asyncio
async def test_driver_that_ends_early_fails_session() -> None:
    async def body(context: DriverContext) -> None:
        context.update(SessionPhase.OPENING_REMOTE)

    runner, _ = _runner(body)
    await runner.launch()
    await runner.wait()
    progress = runner.controller.get()
    assert progress.phase is SessionPhase.FAILED
    assert progress.error == UNFINISHED_MESSAGE


@pytest.mark.asyncio
async def test_driver_exception_becomes_fail_and_does_not_escape(caplog) -> None:
    async def body(context: DriverContext) -> None:
        context.update(SessionPhase.OPENING_REMOTE)
        raise RuntimeError("selector not found")

    runner, _ = _runner(body)
    await runner.launch()
    await runner.wait()

    progress = runner.controller.get()
    assert progress.phase is SessionPhase.FAILED
    assert progress.error == "selector not found"
    assert runner.task is not None
    assert runner.task.exception() is None
    assert any(record.getMessage() == "driver_crashed" for record in caplog.records)


@pytest.mark.asyncio
async def test_driver_failure_uses_detail_as_error() -> None:
    async def body(context: DriverContext) -> None:
        raise DriverFailure("login form rejected credentials")

    runner, _ = _runner(body)
    await runner.launch()
    await runner.wait()
    assert runner.controller.get().error == "login form rejected credentials"


@pytest.mark.asyncio
async def test_cancel_is_honoured_at_next_checkpoint() -> None:
    gate = asyncio.Event()
    reached: list[str] = []

    async def body(context: DriverContext) -> None:
        context.update(SessionPhase.OPENING_REMOTE)
        await gate.wait()
        reached.append("before-checkpoint")
        context.checkpoint()
        reached.append("after-checkpoint")

    runner, _ = _runner(body)
    await runner.launch()
    await asyncio.sleep(0)

    assert runner.controller.request_cancel() is True
    # Still running until the driver reaches a checkpoint.
    assert runner.controller.get().phase is SessionPhase.OPENING_REMOTE
    gate.set()
    await runner.wait()

    progress = runner.controller.get()
    assert reached == ["before-checkpoint"]
    assert progress.phase is SessionPhase.FAILED
    assert progress.error == CANCELLED_MESSAGE
    assert progress.success is False


@pytest.mark.asyncio
async def test_cancel_without_checkpoint_still_fails_with_cancel_message() -> None:
    gate = asyncio.Event()

    async def body(context: DriverContext) -> None:
        context.update(SessionPhase.OPENING_REMOTE)
        await gate.wait()

    runner, _ = _runner(body)
    await runner.launch()
    await asyncio.sleep(0)
    runner.controller.request_cancel()
    gate.set()
    await runner.wait()
    assert runner.controller.get().error == CANCELLED_MESSAGE


@pytest.mark.asyncio
async def test_second_launch_while_running_reports_already_running() -> None:
    gate = asyncio.Event()

    async def body(context: DriverContext) -> None:
        context.update(SessionPhase.OPENING_REMOTE)
        await gate.wait()
        context.update(SessionPhase.PERSISTING_STATE)

    runner, driver = _runner(body)
    first = await runner.launch()
    await asyncio.sleep(0)
    second = await runner.launch()

    assert first.started is True
    assert second.started is False
    assert second.already_running is True
    gate.set()
    await runner.wait()
    assert len(driver.contexts) == 1


@pytest.mark.asyncio
async def test_close_cancels_driver_task_and_fails_session() -> None:
    async def body(context: DriverContext) -> None:
        context.update(SessionPhase.WAITING_USER_INTERACTION)
        await asyncio.sleep(3600)

    runner, _ = _runner(body)
    await runner.launch()
    await asyncio.sleep(0)
    await runner.close()
    progress = runner.controller.get()
    assert progress.phase is SessionPhase.FAILED
    assert progress.error == "Session task cancelled"


@pytest.mark.asyncio
async def test_partial_credentials_are_rejected_before_any_mutation() -> None:
    runner, driver = _runner(_happy)
    with pytest.raises(StartValidationError):
        await runner.launch(StartRequest(email="user@example.com"))
    assert runner.controller.get().phase is SessionPhase.IDLE
    assert driver.contexts == []


@pytest.mark.asyncio
async def test_required_credentials_missing_is_rejected() -> None:
    runner, _ = _runner(_happy, require_credentials=True)
    with pytest.raises(StartValidationError):
        await runner.launch(StartRequest())
    assert runner.controller.get().phase is SessionPhase.IDLE


@pytest.mark.asyncio
async def test_supplied_credentials_are_saved_and_passed_to_driver() -> None:
    store = InMemoryCredentialStore()
    runner, driver = _runner(_happy, credential_store=store)
    request = StartRequest(email="user@example.com", password="pw", secondary_password="pin", target="proj-1")

    await runner.launch(request)
    await runner.wait()

    saved = await store.retrieve()
    assert saved == Credentials(email="user@example.com", password="pw", secondary_password="pin")
    context = driver.contexts[0]
    assert context.credentials == saved
    assert context.target == "proj-1"
    assert context.project_ref == "proj-1"


@pytest.mark.asyncio
async def test_stored_credentials_are_used_when_request_has_none() -> None:
    stored = Credentials(email="saved@example.com", password="secret")
    runner, driver = _runner(
        _happy,
        credential_store=InMemoryCredentialStore(stored),
        require_credentials=True,
    )
    await runner.launch(StartRequest(headless=False))
    await runner.wait()
    context = driver.contexts[0]
    assert context.credentials == stored
    assert context.headless is False


@pytest.mark.asyncio
async def test_context_emit_defaults_project_ref() -> None:
    async def body(context: DriverContext) -> None:
        context.emit(EventPhase.START, "Opening project", action="open", step_index=0)
        context.update(SessionPhase.CHECKING_SESSION)
        context.update(SessionPhase.PERSISTING_STATE)

    runner, _ = _runner(body)
    subscription = runner.broadcaster.subscribe()
    await runner.launch(StartRequest(target="proj-9"))
    await runner.wait()

    event = subscription.queue.get_nowait()
    assert event.project_ref == "proj-9"
    assert event.action == "open"


@pytest.mark.asyncio
async def test_driver_can_promote_partial_state(tmp_path) -> None:
    files = StateFiles(tmp_path / "state.json", tmp_path / "state.partial.json")

    async def body(context: DriverContext) -> None:
        context.update(SessionPhase.CHECKING_SESSION)
        context.state_files.partial_file.write_text(json.dumps({"cookies": [{"name": "sid"}]}), encoding="utf-8")
        context.update(SessionPhase.PERSISTING_STATE)
        context.state_files.promote_partial()

    runner, _ = _runner(body, state_files=files)
    await runner.launch()
    await runner.wait()

    assert runner.controller.get().success is True
    assert files.check().has_state is True


@pytest.mark.asyncio
async def test_context_run_steps_stops_at_step_boundary_after_cancel() -> None:
    from stepwatch.events import WorkflowStep

    started: list[str] = []

    def step(name: str):
        async def body() -> None:
            started.append(name)
            if name == "open":
                runner.controller.request_cancel()

        return body

    async def driver_body(context: DriverContext) -> None:
        context.update(SessionPhase.CHECKING_SESSION)
        await context.run_steps([WorkflowStep("open", step("open")), WorkflowStep("extract", step("extract"))])
        context.update(SessionPhase.PERSISTING_STATE)

    runner, _ = _runner(driver_body)
    subscription = runner.broadcaster.subscribe()
    await runner.launch(StartRequest(target="proj-3"))
    await runner.wait()

    assert started == ["open"]
    progress = runner.controller.get()
    assert progress.phase is SessionPhase.FAILED
    assert progress.error == CANCELLED_MESSAGE
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    assert events[-1].message == "Cancelled by user"
    assert all(event.project_ref == "proj-3" for event in events)
