from enum import Enum
from typing import Literal

from pydantic import BaseModel, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    role: MessageRole
    content: str = ""

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class FunctionCall(BaseModel):
    name: str
    # Raw JSON text as produced by the model; never parsed here.
    arguments: str = ""


class ToolCall(BaseModel):
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ToolCallRequestMessage(Message):
    """An assistant turn that asked for one or more tool calls."""

    tool_calls: list[ToolCall]


class ToolCallResultMessage(Message):
    tool_call_id: str


class ChatMessage(BaseModel):
    """One normalized item of a streamed completion.

    Exactly one of ``content``, ``tool_calls`` or ``usage`` is set on
    messages produced by the stream pipeline.
    """

    role: MessageRole = MessageRole.ASSISTANT
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    usage: Usage | None = None

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    def model_dump(self, **kwargs):
        kwargs.setdefault("exclude_none", True)
        return super().model_dump(**kwargs)
