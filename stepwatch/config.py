"""Configuration models for the server, the broadcaster and the clients."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "STEPWATCH_"


class OverflowPolicy(str, Enum):
    """What a subscriber queue does when it is full."""

    DROP_OLDEST = "drop_oldest"  # evict the oldest buffered event
    DISCONNECT = "disconnect"  # close the subscription


class PollerConfig(BaseModel):
    """Backoff settings for :class:`~stepwatch.client.poller.ClientProgressPoller`."""

    initial_interval_ms: float = Field(default=700, gt=0)
    backoff_factor: float = Field(default=1.4, ge=1.0)
    max_interval_ms: float = Field(default=4000, gt=0)
    stop_on_success_delay_ms: float = Field(default=1500, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> PollerConfig:
        if self.initial_interval_ms > self.max_interval_ms:
            raise ValueError("initial_interval_ms must not exceed max_interval_ms")
        return self


class BroadcasterConfig(BaseModel):
    queue_size: int = Field(default=256, ge=1)
    history_size: int = Field(default=400, ge=0)
    overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST


class StreamConfig(BaseModel):
    max_events: int = Field(default=400, ge=1)
    reconnect_delay_ms: float = Field(default=2000, ge=0)
    auto_reconnect: bool = True
    project_ref: str | None = None


class SessionConfig(BaseModel):
    state_file: str = "session_state.json"
    partial_state_file: str = "session_state.partial.json"
    max_state_age_hours: float = Field(default=8.0, gt=0)
    require_credentials: bool = False


class StepwatchSettings(BaseSettings):
    """Top-level settings, read from ``STEPWATCH_*`` environment variables.

    Nested sections use a double underscore, e.g.
    ``STEPWATCH_POLLER__MAX_INTERVAL_MS=8000`` or
    ``STEPWATCH_SESSION__STATE_FILE=/var/lib/stepwatch/state.json``.
    """

    api_base: str = "/api"
    session: SessionConfig = Field(default_factory=SessionConfig)
    broadcaster: BroadcasterConfig = Field(default_factory=BroadcasterConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        extra="ignore",
    )


__all__ = [
    "BroadcasterConfig",
    "ENV_PREFIX",
    "OverflowPolicy",
    "PollerConfig",
    "SessionConfig",
    "StepwatchSettings",
    "StreamConfig",
]
