"""Server-Sent Events wire format."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

from .models import StreamMessage

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME = ": heartbeat\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
}


def format_event(message: StreamMessage) -> str:
    """One JSON message as an SSE frame: ``data: {...}`` plus a blank line."""
    return f"data: {json.dumps(message.to_dict())}\n\n"


def retry_directive(milliseconds: int) -> str:
    """Tell EventSource clients how long to wait before reconnecting."""
    return f"retry: {milliseconds}\n\n"


async def iter_events(lines: AsyncIterable[str]) -> AsyncIterator[dict]:
    """Parse SSE lines into JSON message dicts.

    Comment lines (heartbeats), ``retry:`` and unknown fields are skipped.
    Multi-line ``data:`` fields are joined with newlines per the SSE rules.
    Frames that are not valid JSON objects are logged and dropped.
    """
    buffer: list[str] = []
    async for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if buffer:
                raw = "\n".join(buffer)
                buffer = []
                try:
                    payload = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping non-JSON SSE frame: %.80s", raw)
                    continue
                if isinstance(payload, dict):
                    yield payload
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            buffer.append(value[1:] if value.startswith(" ") else value)
