"""Server-sent event framing for step events."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

from stepwatch.events.broadcaster import Subscription
from stepwatch.events.models import StepEvent

KEEPALIVE_FRAME = b": keep-alive\n\n"


def encode_step_event(event: StepEvent) -> bytes:
    data = json.dumps(event.to_wire(), ensure_ascii=False, separators=(",", ":"))
    return f"data: {data}\n\n".encode()


async def stream_subscription(
    subscription: Subscription,
    *,
    keepalive_s: float | None = 15.0,
) -> AsyncIterator[bytes]:
    """Yield one frame per event until the subscription closes.

    A comment frame is sent after ``keepalive_s`` of silence so that proxies
    keep the connection open and dead clients are noticed on write.
    """
    try:
        while True:
            if keepalive_s is None:
                event = await subscription.get()
            else:
                try:
                    event = await asyncio.wait_for(subscription.get(), timeout=keepalive_s)
                except TimeoutError:
                    yield KEEPALIVE_FRAME
                    continue
            if event is None:
                break
            yield encode_step_event(event)
    finally:
        subscription.close()


__all__ = ["KEEPALIVE_FRAME", "encode_step_event", "stream_subscription"]
