"""Observer-side helpers: HTTP client, adaptive poller and stream consumer."""

from .http import ProgressApiClient
from .poller import AsyncioScheduler, ClientProgressPoller, ProgressSource, Scheduler, next_interval
from .stream import EventStreamClient, ProgressTracker

__all__ = [
    "AsyncioScheduler",
    "ClientProgressPoller",
    "EventStreamClient",
    "ProgressApiClient",
    "ProgressSource",
    "ProgressTracker",
    "Scheduler",
    "next_interval",
]
