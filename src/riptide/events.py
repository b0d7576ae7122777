"""Decoded backend events.

Every frame pulled off the wire is classified into one of the event types
below.  The set is closed: anything the decoder does not understand becomes
:class:`Unrecognized` and is skipped downstream.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class DecodedEvent:
    """Base for all decoded events."""


@dataclass
class TextDelta(DecodedEvent):
    """Incremental assistant text."""

    text: str = ""


@dataclass
class ToolCallStarted(DecodedEvent):
    """A function-call output item was opened."""

    item_id: str = ""
    call_id: str | None = None
    name: str = ""
    arguments: str = ""
    output_index: int | None = None


@dataclass
class ToolCallArgsDelta(DecodedEvent):
    """A fragment of a function call's argument text."""

    item_id: str | None = None
    delta: str = ""
    output_index: int | None = None


@dataclass
class ToolCallCompleted(DecodedEvent):
    """A function-call item was closed.

    ``arguments`` is ``None`` when the backend did not declare the final
    value; the accumulated fragments are used instead.
    """

    item_id: str | None = None
    call_id: str | None = None
    name: str | None = None
    arguments: str | None = None
    output_index: int | None = None


@dataclass
class UsageReported(DecodedEvent):
    """Token accounting, already in prompt/completion naming."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ErrorReported(DecodedEvent):
    """An error the backend reported inside an otherwise successful stream."""

    message: str = ""
    code: str | None = None


@dataclass
class ResponseDone(DecodedEvent):
    """The backend's terminal record; nothing useful follows it."""


@dataclass
class Unrecognized(DecodedEvent):
    """A frame that was not JSON or carried an unknown event kind."""

    raw: str = ""
