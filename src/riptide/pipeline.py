"""End-to-end stream parsing: bytes in, :class:`ChatMessage` out."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from contextlib import aclosing

from riptide.decoder import EventDecoder
from riptide.events import ErrorReported, ResponseDone, Unrecognized
from riptide.frames import (
    FrameExtractor,
    NDJSONFrameExtractor,
    SSEFrameExtractor,
    iter_frames,
)
from riptide.message import ChatMessage
from riptide.normalizer import normalize
from riptide.streaming import ToolCallAssembler

logger = logging.getLogger(__name__)


async def _release(source: AsyncIterable[bytes]) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


async def parse_stream(
    source: AsyncIterable[bytes],
    extractor: FrameExtractor,
    decoder: EventDecoder | None = None,
) -> AsyncIterator[ChatMessage]:
    """Parse a backend byte stream into normalized chat messages.

    All parsing state (decode buffer, decoder counters, open tool calls)
    lives in this call and is discarded when it returns.  The source is
    closed on exit, including when the caller abandons iteration.
    """
    decoder = decoder or EventDecoder()
    assembler = ToolCallAssembler()
    try:
        finished = False
        async with aclosing(iter_frames(source, extractor)) as frames:
            async for frame in frames:
                for event in decoder.decode(frame):
                    if isinstance(event, ResponseDone):
                        finished = True
                        break
                    if isinstance(event, Unrecognized):
                        continue
                    if isinstance(event, ErrorReported):
                        logger.warning(f"Backend reported an error: {event.message} (code={event.code})")
                        continue
                    completed = assembler.feed(event)
                    message = normalize(completed if completed is not None else event)
                    if message is not None:
                        yield message
                if finished:
                    break

        for call in assembler.drain():
            yield normalize(call)
    finally:
        await _release(source)


def parse_responses_stream(source: AsyncIterable[bytes]) -> AsyncIterator[ChatMessage]:
    """Parse a Server-Sent Events stream of Responses events."""
    return parse_stream(source, SSEFrameExtractor())


def parse_ollama_stream(source: AsyncIterable[bytes]) -> AsyncIterator[ChatMessage]:
    """Parse an Ollama newline-delimited JSON chat stream."""
    return parse_stream(source, NDJSONFrameExtractor())
