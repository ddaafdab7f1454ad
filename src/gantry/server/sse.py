# src/gantry/server/sse.py
"""Server-sent event framing for the live log stream.

Wire format, one frame per event:

    data: {"type": "log", "message": "...", "level": "info"}\\n\\n

A frame holding only a comment line (``:``) is a keep-alive and carries
no event. Consumers ignore keep-alives, comments, and unknown event types.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

from gantry.contracts import DeploymentEvent, event_from_payload
from gantry.core.logging import get_logger

logger = get_logger(__name__)

KEEPALIVE_FRAME = b":\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def encode_frame(event: DeploymentEvent) -> bytes:
    """Render one event as a complete SSE frame."""
    return f"data: {json.dumps(event.to_payload(), separators=(',', ':'))}\n\n".encode()


def _parse_frame(frame: str) -> DeploymentEvent | None:
    data_lines: list[str] = []
    for line in frame.splitlines():
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if not data_lines:
        return None
    try:
        payload = json.loads("\n".join(data_lines))
    except json.JSONDecodeError:
        logger.debug("sse_frame_not_json", frame=frame[:200])
        return None
    if not isinstance(payload, dict):
        return None
    return event_from_payload(payload)


class FrameDecoder:
    """Incremental SSE parser for consumers of the live log stream.

    Feed raw chunks as they arrive; complete frames come back as events.
    Chunk boundaries may fall anywhere, including inside a frame.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[DeploymentEvent]:
        text = chunk.decode("utf-8") if isinstance(chunk, bytes) else chunk
        self._buffer += text.replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split("\n\n")
        events: list[DeploymentEvent] = []
        for frame in frames:
            event = _parse_frame(frame)
            if event is not None:
                events.append(event)
        return events


def decode_stream(payload: bytes | str) -> list[DeploymentEvent]:
    """Decode a complete stream body into events."""
    return FrameDecoder().feed(payload)


class StreamSubscriber:
    """Event bus subscriber backing one live stream response.

    ``deliver`` and ``close`` never block: frames are queued and drained by
    ``frames()``, which also emits a keep-alive whenever the channel has
    been idle for ``keepalive_seconds``.
    """

    def __init__(self, *, keepalive_seconds: float) -> None:
        self._keepalive_seconds = keepalive_seconds
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: DeploymentEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(encode_frame(event))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[bytes]:
        """Yield queued frames until the subscriber is closed."""
        while True:
            try:
                frame = await asyncio.wait_for(self._queue.get(), timeout=self._keepalive_seconds)
            except TimeoutError:
                yield KEEPALIVE_FRAME
                continue
            if frame is None:
                return
            yield frame
