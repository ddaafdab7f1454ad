# src/gantry/server/merger.py
"""Merge locally injected events into a relayed SSE byte stream.

An intermediary relaying the orchestrator's stream (the edge relay) may
want to add events of its own, e.g. pre-flight progress before the
orchestrator answers. Upstream chunks are opaque bytes and may end in the
middle of a frame, so injected frames are only ever written between two
whole upstream chunks:

    each pull:  flush every queued injected frame, else forward one chunk
    upstream end: flush once more, then finish

Closing or cancelling the merged stream closes the upstream iterator.
"""

from __future__ import annotations

from collections import deque
from collections.abc import AsyncIterable, AsyncIterator

from gantry.contracts import DeploymentEvent, LogEvent, LogLevel
from gantry.server.sse import encode_frame


class LogStreamMerger:
    """Single-consumer merge of an upstream byte stream and injected events.

    Args:
        upstream: Raw SSE bytes from the orchestrator
        source: Label put on events created with inject_log()
    """

    def __init__(self, upstream: AsyncIterable[bytes], *, source: str = "edge") -> None:
        self._upstream = upstream
        self._source = source
        self._pending: deque[DeploymentEvent] = deque()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._pending)

    def inject(self, event: DeploymentEvent) -> None:
        """Queue an event for the next pull. Ignored once the stream is closed."""
        if self._closed:
            return
        self._pending.append(event)

    def inject_log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        self.inject(LogEvent(message=message, level=level, source=self._source))

    def _flush(self) -> bytes:
        frames = [encode_frame(event) for event in self._pending]
        self._pending.clear()
        return b"".join(frames)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.stream()

    async def stream(self) -> AsyncIterator[bytes]:
        upstream = aiter(self._upstream)
        try:
            while True:
                if self._pending:
                    yield self._flush()
                    continue
                try:
                    chunk = await anext(upstream)
                except StopAsyncIteration:
                    break
                if chunk:
                    yield chunk
            if self._pending:
                yield self._flush()
        finally:
            self._closed = True
            self._pending.clear()
            aclose = getattr(upstream, "aclose", None)
            if aclose is not None:
                await aclose()
