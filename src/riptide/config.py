from pydantic import BaseModel, Field

from riptide.tools import ToolFormat


class ProviderConfig(BaseModel):
    """Settings shared by provider adapters.

    Loading these from a settings file is the caller's job; providers only
    read them.

    Example:
        config = ProviderConfig(
            provider_tool_format_overrides={"ollama": "qwen"},
            temperature=0.2,
        )
    """

    provider_tool_format_overrides: dict[str, ToolFormat] = Field(default_factory=dict)
    temperature: float = 0.7
    top_p: float = 0.9
    num_predict: int = 4096
    timeout: float = 600.0
