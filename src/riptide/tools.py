import inspect
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field


class ToolFormat(str, Enum):
    """Function-calling schema dialects understood by model families."""

    OPENAI = "openai"
    LLAMA = "llama"
    DEEPSEEK = "deepseek"
    QWEN = "qwen"
    HERMES = "hermes"
    GEMMA = "gemma"


def normalize_to_json_type(python_type_str: str) -> str:
    type_mapping = {
        'str': 'string',
        'int': 'number',
        'float': 'number',
        'bool': 'boolean',
        'NoneType': 'null',
        'dict': 'object',
        'list': 'array',
        'tuple': 'array',  # closest equivalent
        'set': 'array',    # closest equivalent
    }
    return type_mapping.get(python_type_str, 'string')


class Tool(BaseModel):
    """A function the model may call, described by a JSON schema."""

    name: str
    description: str | None = None
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @classmethod
    def from_function(cls, func: Callable) -> "Tool":
        """Build a tool schema from a plain function's signature."""
        signature = inspect.signature(func)
        properties = {}
        required = []
        for param_name, param in signature.parameters.items():
            annotation = param.annotation
            type_name = getattr(annotation, "__name__", str(annotation))
            properties[param_name] = {
                "type": normalize_to_json_type(type_name),
                "description": "",
            }
            if param.default is inspect.Parameter.empty:
                required.append(param_name)
        return cls(
            name=func.__name__,
            description=inspect.getdoc(func),
            parameters={
                "type": "object",
                "properties": properties,
                "required": required,
            },
        )

    @classmethod
    def from_schema(cls, schema: dict) -> "Tool":
        """Accept either the chat shape (``{"function": {...}}``) or the
        flat Responses shape."""
        function = schema.get("function", schema)
        return cls(
            name=function["name"],
            description=function.get("description"),
            parameters=function.get("parameters") or {"type": "object", "properties": {}},
        )

    def chat_schema(self) -> dict:
        """Chat-completions style schema, as sent to Ollama."""
        function: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            function["description"] = self.description
        function["parameters"] = self.parameters
        return {"type": "function", "function": function}

    def responses_schema(self) -> dict:
        """Flat schema used by the Responses API."""
        schema: dict[str, Any] = {"type": "function", "name": self.name}
        if self.description is not None:
            schema["description"] = self.description
        schema["parameters"] = self.parameters
        schema["strict"] = False
        return schema


def coerce_tools(tools: list[Tool | dict] | None) -> list[Tool]:
    if not tools:
        return []
    return [t if isinstance(t, Tool) else Tool.from_schema(t) for t in tools]
