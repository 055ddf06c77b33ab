"""FastAPI binding for the session endpoints and the step-event stream."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from stepwatch.config import StepwatchSettings
from stepwatch.errors import StartValidationError, StepwatchError
from stepwatch.sessions.models import CancelResponse, ClearSessionResponse, SessionStatus, StartRequest
from stepwatch.sessions.runner import SessionRunner

from .sse import stream_subscription

logger = logging.getLogger("stepwatch.server")

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def _problem_response(exc: StepwatchError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem_details().model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


def create_app(
    runner: SessionRunner,
    *,
    settings: StepwatchSettings | None = None,
    include_docs: bool = True,
    keepalive_s: float | None = 15.0,
) -> FastAPI:
    settings = settings or StepwatchSettings()
    controller = runner.controller
    broadcaster = runner.broadcaster
    state_files = runner.state_files

    docs_url = "/docs" if include_docs else None
    openapi_url = "/openapi.json" if include_docs else None

    @asynccontextmanager
    async def _lifespan(_app: FastAPI):
        try:
            yield
        finally:
            # Ends open event streams before the driver task is torn down.
            broadcaster.close()
            await runner.close()

    app = FastAPI(
        title="stepwatch",
        docs_url=docs_url,
        openapi_url=openapi_url,
        lifespan=_lifespan,
    )

    @app.exception_handler(StepwatchError)
    async def _handle_stepwatch_error(_request: Request, exc: StepwatchError):
        return _problem_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(_request: Request, exc: RequestValidationError):
        detail = json.dumps(exc.errors(), ensure_ascii=False, default=str)
        return _problem_response(StartValidationError(detail))

    router = APIRouter(prefix=settings.api_base.rstrip("/"))

    @router.get("/login-progress")
    async def login_progress() -> JSONResponse:
        return JSONResponse(content=controller.get().to_wire())

    @router.get("/login-status")
    async def login_status() -> JSONResponse:
        if state_files is None:
            status = SessionStatus(logged_in=False, has_state=False)
        else:
            status = state_files.check()
        return JSONResponse(content=status.to_wire())

    @router.post("/login/start")
    async def login_start(
        payload: StartRequest | None = Body(default=None),
        headless: bool | None = Query(default=None),
    ) -> JSONResponse:
        request = payload or StartRequest()
        if headless is not None:
            request = request.model_copy(update={"headless": headless})
        result = await runner.launch(request)
        if result.already_running:
            logger.info("start_rejected_running")
        return JSONResponse(content=result.to_wire())

    @router.post("/login/cancel")
    async def login_cancel() -> JSONResponse:
        if controller.request_cancel():
            response = CancelResponse(success=True, message="Cancellation requested")
        else:
            response = CancelResponse(success=True, message="No session running")
        return JSONResponse(content=response.to_wire())

    @router.post("/clear-session")
    async def clear_session() -> JSONResponse:
        if state_files is None:
            response = ClearSessionResponse(success=True, message="Session state was already clear.")
        else:
            response = state_files.clear()
        return JSONResponse(content=response.to_wire())

    @router.get("/workflow/stream")
    async def workflow_stream(project_ref: str | None = Query(default=None, alias="projectRef")):
        # Subscribe before returning so nothing published after the request is missed.
        subscription = broadcaster.subscribe(project_ref)
        logger.debug("stream_opened", extra={"project_ref": project_ref})
        return StreamingResponse(
            stream_subscription(subscription, keepalive_s=keepalive_s),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    app.include_router(router)
    return app


__all__ = ["SSE_HEADERS", "create_app"]
