"""HTTP client for the session endpoints."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from stepwatch.errors import TransportError
from stepwatch.sessions.models import (
    CancelResponse,
    ClearSessionResponse,
    SessionProgress,
    SessionStatus,
    StartRequest,
    StartResponse,
)

logger = logging.getLogger("stepwatch.client")

_ModelT = TypeVar("_ModelT", bound=BaseModel)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("detail", "message", "error", "title"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return response.reason_phrase or "request failed"


class ProgressApiClient:
    """Thin async wrapper over the session API.

    Every failure (connection, non-2xx status, malformed body) surfaces as
    :class:`TransportError`; callers must not read it as a server-side
    session failure.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        api_base: str = "/api",
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)
        self._api_base = api_base.rstrip("/")

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    def url(self, path: str) -> str:
        return f"{self._api_base}/{path.lstrip('/')}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ProgressApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, self.url(path), params=params, json=json)
        except httpx.HTTPError as exc:
            logger.debug("transport_failed", extra={"path": path, "error": str(exc)})
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        return response

    @staticmethod
    def _parse(response: httpx.Response, model: type[_ModelT]) -> _ModelT:
        if response.is_error:
            raise TransportError(
                f"HTTP {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TransportError(f"Invalid {model.__name__} payload", status_code=response.status_code) from exc

    async def get_progress(self) -> SessionProgress:
        return self._parse(await self._request("GET", "login-progress"), SessionProgress)

    async def get_status(self) -> SessionStatus:
        return self._parse(await self._request("GET", "login-status"), SessionStatus)

    async def start(self, request: StartRequest | None = None) -> StartResponse:
        request = request or StartRequest()
        response = await self._request(
            "POST",
            "login/start",
            params={"headless": str(request.headless).lower()},
            json=request.to_wire(exclude={"headless"}),
        )
        if response.status_code == 409:
            return StartResponse(started=False, already_running=True)
        return self._parse(response, StartResponse)

    async def cancel(self) -> CancelResponse:
        return self._parse(await self._request("POST", "login/cancel", json={}), CancelResponse)

    async def clear_session(self) -> ClearSessionResponse:
        return self._parse(await self._request("POST", "clear-session", json={}), ClearSessionResponse)


__all__ = ["ProgressApiClient"]
