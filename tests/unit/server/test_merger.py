# tests/unit/server/test_merger.py
"""Tests for LogStreamMerger."""

from collections.abc import AsyncIterator

import pytest

from gantry.contracts import LogEvent, LogLevel
from gantry.server.merger import LogStreamMerger
from gantry.server.sse import encode_frame


async def chunks(*items: bytes) -> AsyncIterator[bytes]:
    for item in items:
        yield item


class TestLogStreamMerger:
    """Tests for ordering, flushing and closing."""

    @pytest.mark.asyncio
    async def test_injected_frames_interleave_between_chunks(self) -> None:
        e1 = LogEvent(message="first")
        e2 = LogEvent(message="second")
        merger = LogStreamMerger(chunks(b"A", b"B"))
        stream = merger.stream()

        merger.inject(e1)
        received = [await anext(stream), await anext(stream)]
        merger.inject(e2)
        received += [chunk async for chunk in stream]

        assert received == [encode_frame(e1), b"A", encode_frame(e2), b"B"]

    @pytest.mark.asyncio
    async def test_pending_frames_flushed_together(self) -> None:
        merger = LogStreamMerger(chunks(b"A"))
        merger.inject_log("one")
        merger.inject_log("two", LogLevel.WARNING)

        received = [chunk async for chunk in merger]

        expected = encode_frame(LogEvent(message="one", source="edge")) + encode_frame(
            LogEvent(message="two", level=LogLevel.WARNING, source="edge")
        )
        assert received == [expected, b"A"]

    @pytest.mark.asyncio
    async def test_final_flush_after_upstream_ends(self) -> None:
        merger: LogStreamMerger

        async def upstream() -> AsyncIterator[bytes]:
            yield b"A"
            merger.inject_log("upstream finished")

        merger = LogStreamMerger(upstream(), source="relay")

        received = [chunk async for chunk in merger]

        assert received == [b"A", encode_frame(LogEvent(message="upstream finished", source="relay"))]
        assert merger.closed

    @pytest.mark.asyncio
    async def test_empty_chunks_skipped(self) -> None:
        received = [chunk async for chunk in LogStreamMerger(chunks(b"", b"A", b""))]
        assert received == [b"A"]

    @pytest.mark.asyncio
    async def test_closing_stream_closes_upstream(self) -> None:
        state = {"closed": False}

        async def upstream() -> AsyncIterator[bytes]:
            try:
                yield b"A"
                yield b"B"
            finally:
                state["closed"] = True

        merger = LogStreamMerger(upstream())
        stream = merger.stream()
        assert await anext(stream) == b"A"

        await stream.aclose()

        assert state["closed"]
        assert merger.closed

    @pytest.mark.asyncio
    async def test_inject_after_close_ignored(self) -> None:
        merger = LogStreamMerger(chunks())
        assert [chunk async for chunk in merger] == []

        merger.inject_log("too late")

        assert merger.pending == 0
