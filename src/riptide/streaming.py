"""Tool-call assembly for streamed responses.

Backends open a function-call item, stream its argument text in fragments,
and then close it.  :class:`ToolCallAssembler` keeps one
:class:`PendingToolCall` per open item and hands back a finished
:class:`~riptide.message.ToolCall` when the item closes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from riptide.events import (
    DecodedEvent,
    ToolCallArgsDelta,
    ToolCallCompleted,
    ToolCallStarted,
)
from riptide.message import FunctionCall, ToolCall

logger = logging.getLogger(__name__)


@dataclass
class PendingToolCall:
    """Argument text accumulated for one open function-call item."""

    item_id: str
    call_id: str
    name: str = ""
    arguments_buffer: str = ""
    output_index: int | None = None

    def to_tool_call(self, arguments: str | None = None) -> ToolCall:
        return ToolCall(
            id=self.call_id,
            function=FunctionCall(
                name=self.name,
                arguments=self.arguments_buffer if arguments is None else arguments,
            ),
        )


class ToolCallAssembler:
    """Assembles complete tool calls from start/delta/completion events.

    Each item's identity (``call_id``, falling back to ``item_id``) is
    fixed when the item starts.  Deltas and completions for items that are
    not open are dropped.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingToolCall] = {}
        self._by_output_index: dict[int, str] = {}

    @property
    def pending(self) -> list[PendingToolCall]:
        return list(self._pending.values())

    def feed(self, event: DecodedEvent) -> ToolCall | None:
        """Apply one event; return a tool call if it just completed."""
        if isinstance(event, ToolCallStarted):
            self._start(event)
        elif isinstance(event, ToolCallArgsDelta):
            self._append(event)
        elif isinstance(event, ToolCallCompleted):
            return self._complete(event)
        return None

    def drain(self) -> list[ToolCall]:
        """Flush every still-open call with its buffered arguments.

        Calls are returned in the order they started.
        """
        calls = [pending.to_tool_call() for pending in self._pending.values()]
        if calls:
            logger.debug(f"Flushing {len(calls)} unfinished tool call(s) at end of stream")
        self._pending.clear()
        self._by_output_index.clear()
        return calls

    def _start(self, event: ToolCallStarted) -> None:
        if event.item_id in self._pending:
            logger.debug(f"Ignoring repeated start for item {event.item_id}")
            return
        self._pending[event.item_id] = PendingToolCall(
            item_id=event.item_id,
            call_id=event.call_id or event.item_id,
            name=event.name,
            arguments_buffer=event.arguments,
            output_index=event.output_index,
        )
        if event.output_index is not None:
            self._by_output_index[event.output_index] = event.item_id

    def _resolve(self, item_id: str | None, output_index: int | None) -> str | None:
        if item_id is None and output_index is not None:
            return self._by_output_index.get(output_index)
        return item_id

    def _append(self, event: ToolCallArgsDelta) -> None:
        item_id = self._resolve(event.item_id, event.output_index)
        pending = self._pending.get(item_id) if item_id is not None else None
        if pending is None:
            logger.debug(f"Dropping argument delta for unknown item {item_id!r}")
            return
        pending.arguments_buffer += event.delta

    def _complete(self, event: ToolCallCompleted) -> ToolCall | None:
        item_id = self._resolve(event.item_id, event.output_index)
        pending = self._pending.pop(item_id, None) if item_id is not None else None
        if pending is None:
            logger.debug(f"Ignoring completion for unknown item {item_id!r}")
            return None
        if pending.output_index is not None:
            self._by_output_index.pop(pending.output_index, None)
        if not pending.name and event.name:
            pending.name = event.name
        return pending.to_tool_call(event.arguments)
