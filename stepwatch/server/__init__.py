"""HTTP surface: FastAPI app factory and SSE framing."""

from .app import SSE_HEADERS, create_app
from .sse import KEEPALIVE_FRAME, encode_step_event, stream_subscription

__all__ = [
    "KEEPALIVE_FRAME",
    "SSE_HEADERS",
    "create_app",
    "encode_step_event",
    "stream_subscription",
]
