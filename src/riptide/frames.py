"""Split raw response bytes into protocol frames.

Two wire dialects are supported:

* Server-Sent Events, where ``event:`` lines label the ``data:`` lines
  that follow them.
* Newline-delimited JSON, where every non-empty line is a frame.

Extractors keep a decode buffer between reads, so a line that spans two
network chunks is reassembled before it is parsed.
"""

from __future__ import annotations

import codecs
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass
class RawFrame:
    """One protocol unit: a payload and the label it arrived under."""

    data: str
    event: str | None = None


class FrameExtractor(ABC):
    """Incremental line splitter shared by both dialects.

    Subclasses implement :meth:`_parse_line`.  Once a ``[DONE]`` payload
    is seen, :attr:`done` is set and further input is ignored.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> list[RawFrame]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        frames: list[RawFrame] = []
        for line in lines:
            frame = self._parse_line(line.rstrip("\r"))
            if self.done:
                self._buffer = ""
                break
            if frame is not None:
                frames.append(frame)
        return frames

    def close(self) -> None:
        """Discard whatever is left in the buffer.

        A trailing fragment with no newline is an incomplete frame and is
        never parsed.
        """
        tail = self._buffer + self._decoder.decode(b"", final=True)
        if tail.strip():
            logger.debug(f"Discarding {len(tail)} unterminated bytes at end of stream")
        self._buffer = ""

    @abstractmethod
    def _parse_line(self, line: str) -> RawFrame | None:
        """Turn one complete line into a frame, or ``None`` to skip it."""


class SSEFrameExtractor(FrameExtractor):
    """Server-Sent Events framing.

    The most recent ``event:`` label sticks until another one replaces it;
    blank lines separate events but do not reset the label.
    """

    def __init__(self) -> None:
        super().__init__()
        self._event: str | None = None

    def _parse_line(self, line: str) -> RawFrame | None:
        if not line or line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value or None
            return None
        if field != "data":
            return None
        if value == DONE_SENTINEL:
            self.done = True
            return None
        if not value:
            return None
        return RawFrame(data=value, event=self._event)


class NDJSONFrameExtractor(FrameExtractor):
    """Newline-delimited JSON framing; the payload labels itself."""

    def _parse_line(self, line: str) -> RawFrame | None:
        line = line.strip()
        if not line:
            return None
        if line == DONE_SENTINEL:
            self.done = True
            return None
        return RawFrame(data=line)


async def iter_frames(
    source: AsyncIterable[bytes],
    extractor: FrameExtractor,
) -> AsyncIterator[RawFrame]:
    """Pull chunks from *source* and yield frames as they complete."""
    try:
        async for chunk in source:
            for frame in extractor.feed(chunk):
                yield frame
            if extractor.done:
                break
    finally:
        extractor.close()
