"""Stepwatch command-line interface."""

from __future__ import annotations

import asyncio
import importlib
import logging
import sys
from typing import Any

import click
import httpx

from stepwatch.client.http import ProgressApiClient
from stepwatch.client.poller import ClientProgressPoller
from stepwatch.client.stream import EventStreamClient, ProgressTracker
from stepwatch.config import StepwatchSettings
from stepwatch.events.broadcaster import EventBroadcaster
from stepwatch.events.models import StepEvent
from stepwatch.events.reconciler import format_duration
from stepwatch.sessions.controller import SessionController
from stepwatch.sessions.credentials import InMemoryCredentialStore
from stepwatch.sessions.models import SessionPhase, SessionProgress, StartRequest
from stepwatch.sessions.runner import AutomationDriver, SessionRunner
from stepwatch.sessions.state_files import StateFiles

LOG_LEVELS = ("debug", "info", "warning", "error")


class CLIError(Exception):
    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


def load_driver(ref: str) -> AutomationDriver:
    """Import ``module:factory`` and call the factory with no arguments."""
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise CLIError(f"Invalid driver reference '{ref}'", hint="Use the form 'package.module:factory'.")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise CLIError(f"Cannot import driver module '{module_name}': {exc}") from exc
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise CLIError(f"'{attr}' is not a callable in module '{module_name}'")
    driver = factory()
    if not callable(getattr(driver, "run", None)):
        raise CLIError(f"Driver returned by '{ref}' has no run() method")
    return driver


def build_runner(driver: AutomationDriver, settings: StepwatchSettings) -> SessionRunner:
    session = settings.session
    return SessionRunner(
        SessionController(),
        EventBroadcaster(settings.broadcaster),
        driver,
        credential_store=InMemoryCredentialStore(),
        state_files=StateFiles(
            session.state_file,
            session.partial_state_file,
            max_age_hours=session.max_state_age_hours,
        ),
        require_credentials=session.require_credentials,
    )


def _fail(exc: CLIError) -> None:
    click.echo(f"✗ {exc.message}", err=True)
    if exc.hint:
        click.echo(f"  Hint: {exc.hint}", err=True)
    sys.exit(1)


def _build_http_client(url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=url, timeout=10.0)


def _describe(progress: SessionProgress) -> str:
    line = f"[{progress.phase.value}]"
    if progress.attempts:
        line += f" attempt {progress.attempts}"
    if progress.message:
        line += f" {progress.message}"
    if progress.error:
        line += f" error: {progress.error}"
    return line


def _describe_event(tracker: ProgressTracker, event: StepEvent) -> str:
    parts = [f"{tracker.percent:3d}%", event.action or "-", event.phase.value]
    if event.message:
        parts.append(event.message)
    if event.duration_ms is not None:
        parts.append(f"({format_duration(event.duration_ms)})")
    return " ".join(parts)


async def _watch(url: str, settings: StepwatchSettings, request: StartRequest | None) -> int:
    finished = asyncio.Event()
    seen: list[str] = []

    def on_change(poller: ClientProgressPoller) -> None:
        if poller.progress is not None:
            line = _describe(poller.progress)
            if not seen or seen[-1] != line:
                seen.append(line)
                click.echo(line)
        if not poller.running:
            finished.set()

    async with _build_http_client(url) as http:
        api = ProgressApiClient(api_base=settings.api_base, client=http)
        poller = ClientProgressPoller(api, settings.poller, on_change=on_change)
        result = await poller.start(request, launch=request is not None)
        if request is None and poller.progress is not None and poller.progress.phase is SessionPhase.IDLE:
            poller.stop()
            click.echo("✗ No session running", err=True)
            click.echo("  Hint: pass --start to launch one.", err=True)
            return 1
        if result is not None and result.already_running:
            click.echo("Session already running; attaching.")
        await finished.wait()
        poller.stop()

    if poller.error:
        click.echo(f"✗ {poller.error}", err=True)
        return 1
    if poller.status is not None:
        click.echo(f"Logged in: {'yes' if poller.status.logged_in else 'no'}")
    return 0 if poller.progress is not None and poller.progress.success else 1


async def _tail(url: str, settings: StepwatchSettings, until_done: bool) -> int:
    stream_config = settings.stream
    tracker = ProgressTracker(project_ref=stream_config.project_ref, max_events=stream_config.max_events)
    done = asyncio.Event()

    def sink(event: StepEvent) -> None:
        if not tracker.feed(event):
            return
        click.echo(_describe_event(tracker, event))
        if until_done and (tracker.state.finished or tracker.state.workflow_failed):
            done.set()

    path = f"{settings.api_base.rstrip('/')}/workflow/stream"
    async with _build_http_client(url) as http:
        stream = EventStreamClient(http, path=path, config=stream_config)
        runner = asyncio.create_task(stream.run(sink))
        waiter = asyncio.create_task(done.wait())
        try:
            await asyncio.wait({runner, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (runner, waiter):
                task.cancel()
            await asyncio.gather(runner, waiter, return_exceptions=True)
        if runner.done() and not runner.cancelled() and runner.exception() is not None:
            exc = runner.exception()
            click.echo(f"✗ {exc}", err=True)
            return 1

    for record in tracker.tasks:
        suffix = f" {format_duration(record.duration_ms)}" if record.duration_ms is not None else ""
        click.echo(f"  {record.status.value:<8} {record.display}{suffix}")
    return 1 if tracker.state.workflow_failed else 0


@click.group()
@click.version_option()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS),
    default="warning",
    show_default=True,
    help="Logging level for stepwatch loggers.",
)
@click.pass_context
def app(ctx: click.Context, log_level: str) -> None:
    """Stepwatch CLI - serve, watch and tail a browser-automation session."""
    ctx.ensure_object(dict)["log_level"] = log_level
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")


@app.command()
@click.option("--driver", "driver_ref", required=True, help="Automation driver factory as 'module:callable'.")
@click.option("--host", default="127.0.0.1", show_default=True, help="Host interface to bind.")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on.")
@click.option("--no-docs", is_flag=True, help="Disable the OpenAPI docs routes.")
@click.pass_obj
def serve(obj: dict[str, Any], driver_ref: str, host: str, port: int, no_docs: bool) -> None:
    """Serve the session API and event stream."""
    import uvicorn

    from stepwatch.server.app import create_app

    try:
        driver = load_driver(driver_ref)
    except CLIError as exc:
        _fail(exc)
        return
    settings = StepwatchSettings()
    application = create_app(build_runner(driver, settings), settings=settings, include_docs=not no_docs)
    config = uvicorn.Config(application, host=host, port=port, log_level=obj.get("log_level", "warning"))
    click.echo(f"Serving stepwatch on http://{host}:{port}{settings.api_base}")
    uvicorn.Server(config).run()


@app.command()
@click.argument("url")
@click.option("--start", "launch", is_flag=True, help="Ask the server to start a session first.")
@click.option("--headless/--headed", default=True, show_default=True, help="Browser mode for --start.")
@click.option("--target", default=None, help="Target reference passed to the driver.")
def watch(url: str, launch: bool, headless: bool, target: str | None) -> None:
    """Poll session progress at URL until the session ends."""
    settings = StepwatchSettings()
    request = StartRequest(headless=headless, target=target) if launch else None
    try:
        code = asyncio.run(_watch(url, settings, request))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


@app.command()
@click.argument("url")
@click.option("--project-ref", default=None, help="Only show events for this project reference.")
@click.option("--until-done", is_flag=True, help="Exit once the workflow succeeds or fails.")
@click.option("--no-reconnect", is_flag=True, help="Exit when the stream drops instead of reconnecting.")
def tail(url: str, project_ref: str | None, until_done: bool, no_reconnect: bool) -> None:
    """Follow the step-event stream at URL and print reconciled progress."""
    settings = StepwatchSettings()
    overrides: dict[str, Any] = {}
    if project_ref is not None:
        overrides["project_ref"] = project_ref
    if no_reconnect:
        overrides["auto_reconnect"] = False
    if overrides:
        settings = settings.model_copy(update={"stream": settings.stream.model_copy(update=overrides)})
    try:
        code = asyncio.run(_tail(url, settings, until_done))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


__all__ = ["CLIError", "app", "build_runner", "load_driver"]


if __name__ == "__main__":  # pragma: no cover
    app()
