"""Credential storage seam used by the session runner."""

from __future__ import annotations

from typing import Protocol

from .models import Credentials


class CredentialStore(Protocol):
    async def retrieve(self) -> Credentials | None: ...

    async def save(self, credentials: Credentials) -> None: ...


class InMemoryCredentialStore:
    def __init__(self, credentials: Credentials | None = None) -> None:
        self._credentials = credentials

    async def retrieve(self) -> Credentials | None:
        if self._credentials is None:
            return None
        return self._credentials.model_copy()

    async def save(self, credentials: Credentials) -> None:
        self._credentials = credentials.model_copy()


__all__ = ["CredentialStore", "InMemoryCredentialStore"]
