"""Classify raw frames into :mod:`riptide.events`.

Typed payloads (the Responses event vocabulary) are classified by their own
``type`` field; the SSE ``event:`` label is only consulted when ``type`` is
missing.  Untyped payloads that look like Ollama ``/api/chat`` chunks are
classified by their ``message`` and ``done`` fields.

A frame whose fields have unexpected types is rejected as a whole and
becomes :class:`Unrecognized`; it never ends the stream.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from riptide.events import (
    DecodedEvent,
    ErrorReported,
    ResponseDone,
    TextDelta,
    ToolCallArgsDelta,
    ToolCallCompleted,
    ToolCallStarted,
    Unrecognized,
    UsageReported,
)
from riptide.frames import RawFrame

logger = logging.getLogger(__name__)


class MalformedFrame(ValueError):
    """A JSON frame whose fields do not have the expected types."""


def _object(value: Any, field: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedFrame(f"{field} is {type(value).__name__}, expected object")
    return value


def _text(value: Any, field: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise MalformedFrame(f"{field} is {type(value).__name__}, expected string")


def _identifier(value: Any, field: str) -> str | None:
    """Ids are strings on the wire; integers are tolerated and stringified."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise MalformedFrame(f"{field} is {type(value).__name__}, expected string")


def _index(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _item_identity(item: dict, output_index: int | None) -> str:
    """Pick the best available identifier for an output item."""
    item_id = _identifier(item.get("id"), "item.id") or _identifier(
        item.get("call_id"), "item.call_id"
    )
    if item_id:
        return item_id
    return f"output_{output_index}"


def _arguments_text(arguments: Any) -> str | None:
    if arguments is None or isinstance(arguments, str):
        return arguments
    return json.dumps(arguments)


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) else 0


class EventDecoder:
    """Turns one :class:`RawFrame` into zero or more decoded events.

    A decoder belongs to a single stream.  Its only state is the counter
    used to name tool calls that arrive without any identifier.
    """

    def __init__(self) -> None:
        self._synthetic_calls = 0

    def decode(self, frame: RawFrame) -> list[DecodedEvent]:
        try:
            payload = json.loads(frame.data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON frame: {frame.data[:200]!r}")
            return [Unrecognized(raw=frame.data)]
        if not isinstance(payload, dict):
            return [Unrecognized(raw=frame.data)]

        try:
            kind = _text(payload.get("type"), "type") or frame.event
            if kind:
                return self._decode_typed(kind, payload, frame.data)
            if "message" in payload or "done" in payload or "error" in payload:
                return self._decode_chat_chunk(payload)
        except MalformedFrame as e:
            logger.debug(f"Skipping malformed frame ({e}): {frame.data[:200]!r}")
        return [Unrecognized(raw=frame.data)]

    # ------------------------------------------------------------------
    # Responses event vocabulary
    # ------------------------------------------------------------------

    def _decode_typed(self, kind: str, payload: dict, raw: str) -> list[DecodedEvent]:
        output_index = _index(payload.get("output_index"))

        if kind == "response.output_text.delta":
            return [TextDelta(text=_text(payload.get("delta"), "delta") or "")]

        if kind == "response.output_item.added":
            item = _object(payload.get("item"), "item")
            if item.get("type") != "function_call":
                return [Unrecognized(raw=raw)]
            return [ToolCallStarted(
                item_id=_item_identity(item, output_index),
                call_id=_identifier(item.get("call_id"), "item.call_id"),
                name=_text(item.get("name"), "item.name") or "",
                arguments=_arguments_text(item.get("arguments")) or "",
                output_index=output_index,
            )]

        if kind == "response.function_call_arguments.delta":
            return [ToolCallArgsDelta(
                item_id=_identifier(payload.get("item_id"), "item_id"),
                delta=_text(payload.get("delta"), "delta") or "",
                output_index=output_index,
            )]

        if kind == "response.function_call_arguments.done":
            return [ToolCallCompleted(
                item_id=_identifier(payload.get("item_id"), "item_id"),
                arguments=_arguments_text(payload.get("arguments")),
                output_index=output_index,
            )]

        if kind == "response.output_item.done":
            item = _object(payload.get("item"), "item")
            if item.get("type") != "function_call":
                return [Unrecognized(raw=raw)]
            return [ToolCallCompleted(
                item_id=_item_identity(item, output_index),
                call_id=_identifier(item.get("call_id"), "item.call_id"),
                name=_text(item.get("name"), "item.name"),
                arguments=_arguments_text(item.get("arguments")),
                output_index=output_index,
            )]

        if kind == "response.completed":
            # Terminal even when the response body is unusable.
            response = payload.get("response")
            events: list[DecodedEvent] = []
            usage = response.get("usage") if isinstance(response, dict) else None
            if isinstance(usage, dict):
                events.append(self._usage(
                    usage.get("input_tokens"),
                    usage.get("output_tokens"),
                    usage.get("total_tokens"),
                ))
            events.append(ResponseDone())
            return events

        if kind in ("response.failed", "response.incomplete"):
            response = _object(payload.get("response"), "response")
            error = _object(response.get("error"), "response.error")
            details = _object(response.get("incomplete_details"), "response.incomplete_details")
            message = error.get("message") or details.get("reason") or kind
            return [
                ErrorReported(message=str(message), code=error.get("code")),
                ResponseDone(),
            ]

        if kind == "error":
            return [ErrorReported(
                message=str(payload.get("message") or ""),
                code=payload.get("code"),
            )]

        return [Unrecognized(raw=raw)]

    # ------------------------------------------------------------------
    # Ollama /api/chat chunks
    # ------------------------------------------------------------------

    def _decode_chat_chunk(self, payload: dict) -> list[DecodedEvent]:
        events: list[DecodedEvent] = []
        message = _object(payload.get("message"), "message")

        content = _text(message.get("content"), "message.content")
        if content:
            events.append(TextDelta(text=content))

        tool_calls = message.get("tool_calls") or []
        if not isinstance(tool_calls, list):
            raise MalformedFrame("message.tool_calls is not a list")
        for call in tool_calls:
            events.extend(self._complete_tool_call(_object(call, "tool_call")))

        if "error" in payload:
            events.append(ErrorReported(message=str(payload["error"])))
            events.append(ResponseDone())
            return events

        if payload.get("done"):
            events.append(self._usage(
                payload.get("prompt_eval_count"),
                payload.get("eval_count"),
                None,
            ))
            events.append(ResponseDone())
        return events

    def _complete_tool_call(self, call: dict) -> list[DecodedEvent]:
        """Ollama sends each tool call whole, so open and close it at once."""
        function = _object(call.get("function"), "tool_call.function")
        name = _text(function.get("name"), "tool_call.function.name") or ""
        call_id = _identifier(call.get("id"), "tool_call.id")
        item_id = call_id
        if not item_id:
            item_id = f"call_{self._synthetic_calls}"
        self._synthetic_calls += 1
        arguments = _arguments_text(function.get("arguments"))
        return [
            ToolCallStarted(
                item_id=item_id,
                call_id=call_id,
                name=name,
            ),
            ToolCallCompleted(
                item_id=item_id,
                arguments=arguments if arguments is not None else "",
            ),
        ]

    @staticmethod
    def _usage(prompt: Any, completion: Any, total: Any) -> UsageReported:
        prompt_tokens = _as_int(prompt)
        completion_tokens = _as_int(completion)
        if not isinstance(total, int):
            total = prompt_tokens + completion_tokens
        return UsageReported(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total,
        )
