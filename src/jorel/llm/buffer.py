"""
Stream buffering — coalesce small content chunks into fewer, larger ones.

Content and reasoning chunks are accumulated separately. A buffer is
flushed when its oldest content is older than the configured window,
right before any non-content event passes through, and when the source
ends or raises.
"""

from __future__ import annotations

import time
from typing import AsyncGenerator, AsyncIterator

from jorel.llm.contracts import (
    ChunkEvent,
    ProviderStreamEvent,
    ReasoningChunkEvent,
    StreamBufferConfig,
)


class _Buffer:
    def __init__(self, window_ms: int):
        self.window_ms = window_ms
        self.content = ""
        self.started_at: float | None = None

    def add(self, content: str) -> None:
        if not self.content:
            self.started_at = time.monotonic()
        self.content += content

    def due(self) -> bool:
        if not self.content or self.started_at is None:
            return False
        return (time.monotonic() - self.started_at) * 1000 >= self.window_ms

    def take(self) -> str:
        content = self.content
        self.content = ""
        self.started_at = None
        return content


async def buffered_stream(
    source: AsyncIterator[ProviderStreamEvent],
    config: StreamBufferConfig | None,
) -> AsyncGenerator[ProviderStreamEvent, None]:
    if config is None or not config.active:
        async for event in source:
            yield event
        return

    text = _Buffer(config.buffer_time_ms)
    reasoning = _Buffer(config.buffer_time_ms)

    def pending() -> list[ProviderStreamEvent]:
        flushed: list[ProviderStreamEvent] = []
        if text.content:
            flushed.append(ChunkEvent(content=text.take()))
        if reasoning.content:
            flushed.append(ReasoningChunkEvent(content=reasoning.take()))
        return flushed

    try:
        async for event in source:
            if isinstance(event, ChunkEvent):
                text.add(event.content)
                if text.due():
                    yield ChunkEvent(content=text.take())
            elif isinstance(event, ReasoningChunkEvent):
                reasoning.add(event.content)
                if reasoning.due():
                    yield ReasoningChunkEvent(content=reasoning.take())
            else:
                for flushed in pending():
                    yield flushed
                yield event
    except Exception:
        for flushed in pending():
            yield flushed
        raise
    else:
        for flushed in pending():
            yield flushed
