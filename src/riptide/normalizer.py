"""Map decoded stream items onto the outward :class:`ChatMessage` shape."""

from __future__ import annotations

from riptide.events import TextDelta, UsageReported
from riptide.message import ChatMessage, ToolCall, Usage


def normalize(item: object) -> ChatMessage | None:
    """Return the outward message for *item*, or ``None`` to skip it.

    Text deltas, completed tool calls and usage reports each produce one
    message; tool calls are never batched so callers see them in arrival
    order.
    """
    if isinstance(item, TextDelta):
        return ChatMessage(content=item.text)
    if isinstance(item, ToolCall):
        return ChatMessage(tool_calls=[item])
    if isinstance(item, UsageReported):
        return ChatMessage(usage=Usage(
            prompt_tokens=item.prompt_tokens,
            completion_tokens=item.completion_tokens,
            total_tokens=item.total_tokens,
        ))
    return None
