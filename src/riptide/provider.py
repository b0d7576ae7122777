import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx
from openai import APIStatusError, AsyncOpenAI, OpenAIError
from pydantic import BaseModel

from riptide.auth import BearerTokenCache
from riptide.config import ProviderConfig
from riptide.instrumentation import (
    completion_span,
    record_tool_call,
    record_usage,
)
from riptide.message import ChatMessage, Message
from riptide.pipeline import parse_ollama_stream, parse_responses_stream
from riptide.tools import Tool, ToolFormat, coerce_tools

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class ProviderError(Exception):
    """A backend refused or failed a request.

    Args:
        message: Human-readable description, including status and body.
        status_code: HTTP status code, when the failure came from a response.
        reason: HTTP reason phrase.
        body: Response body text.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        reason: str | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.body = body


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: str
    supported_tool_formats: list[ToolFormat]
    context_window: int = 4096
    max_output_tokens: int = 4096


def _dump_message(message: Message | dict) -> dict:
    if isinstance(message, BaseModel):
        return message.model_dump()
    return dict(message)


class ModelProvider(ABC):
    """Backend-agnostic contract for streaming chat completions.

    Subclasses own request construction for one backend dialect and feed
    the response bytes through the shared stream pipeline.  An instance is
    a long-lived session: it holds the selected model, tool-format
    override, configuration and bearer-token cache.

    Args:
        config: Shared provider settings.
        api_key: Static credential, also the fallback when a token fetch
            fails.
        token_url: Endpoint to fetch short-lived bearer tokens from.
    """

    name: str = ""
    default_model: str = ""
    default_tool_format: ToolFormat = ToolFormat.OPENAI
    # Checked in order against the model id; first substring match wins.
    tool_format_families: tuple[tuple[str, ToolFormat], ...] = ()
    fallback_models: tuple[ModelInfo, ...] = ()

    def __init__(
        self,
        config: ProviderConfig | None = None,
        api_key: str | None = None,
        token_url: str | None = None,
    ):
        self.config = config or ProviderConfig()
        self.auth = BearerTokenCache(token_url=token_url, api_key=api_key)
        self._model = self.default_model
        self._tool_format_override: ToolFormat | None = None

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    def set_model(self, model_id: str) -> None:
        self._model = model_id

    def get_current_model(self) -> str:
        return self._model

    def set_config(self, config: ProviderConfig) -> None:
        self.config = config

    def set_tool_format_override(self, tool_format: ToolFormat | str | None) -> None:
        self._tool_format_override = ToolFormat(tool_format) if tool_format else None

    def set_api_key(self, api_key: str | None) -> None:
        self.auth.api_key = api_key

    def set_token_url(self, token_url: str | None) -> None:
        self.auth.set_token_url(token_url)

    def get_token_url(self) -> str | None:
        return self.auth.token_url

    def clear_cached_token(self) -> None:
        self.auth.clear()

    def resolve_tool_format(self) -> ToolFormat:
        if self._tool_format_override is not None:
            return self._tool_format_override
        configured = self.config.provider_tool_format_overrides.get(self.name)
        if configured is not None:
            return configured
        for family, tool_format in self.tool_format_families:
            if family in self._model:
                return tool_format
        return self.default_tool_format

    def is_paid_mode(self) -> bool:
        return False

    def get_server_tools(self) -> list[str]:
        return []

    async def invoke_server_tool(self, tool_name: str, params: Any, config: Any = None) -> Any:
        raise ProviderError(f"Server tools not supported by {self.name} provider")

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """Return available models, or the static fallback catalog."""

    async def stream_chat_completion(
        self,
        messages: list[Message | dict],
        tools: list[Tool | dict] | None = None,
    ) -> AsyncIterator[ChatMessage]:
        """Stream normalized messages for one chat request.

        Raises:
            ProviderError: If the backend answers with a non-2xx status.
        """
        async with completion_span(self.name, self._model) as span:
            async with aclosing(
                self._stream(messages, coerce_tools(tools))
            ) as stream:
                async for message in stream:
                    if message.usage is not None:
                        record_usage(span, message.usage)
                    for call in message.tool_calls or []:
                        record_tool_call(span, call)
                    yield message

    @abstractmethod
    def _stream(
        self, messages: list[Message | dict], tools: list[Tool],
    ) -> AsyncIterator[ChatMessage]:
        ...

    def _fallback_catalog(self) -> list[ModelInfo]:
        return [model.model_copy() for model in self.fallback_models]


# ----------------------------------------------------------------------
# Ollama
# ----------------------------------------------------------------------

OLLAMA_FORMATS = [
    ToolFormat.LLAMA,
    ToolFormat.DEEPSEEK,
    ToolFormat.QWEN,
    ToolFormat.HERMES,
    ToolFormat.GEMMA,
]

OLLAMA_CONTEXT_WINDOWS = {
    "llama2": 4096,
    "llama2:7b": 4096,
    "llama2:13b": 4096,
    "llama2:70b": 4096,
    "codellama": 100000,
    "codellama:7b": 100000,
    "codellama:13b": 100000,
    "codellama:34b": 100000,
    "deepseek-coder": 16384,
    "deepseek-coder:6.7b": 16384,
    "deepseek-coder:33b": 16384,
    "qwen2.5-coder": 32768,
    "qwen2.5-coder:7b": 32768,
    "qwen2.5-coder:32b": 32768,
    "hermes-coder": 8192,
    "gemma2-coder": 8192,
}


def _ollama_fallback(model_id: str, tool_format: ToolFormat, context_window: int) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=model_id,
        provider="ollama",
        supported_tool_formats=[tool_format],
        context_window=context_window,
    )


class OllamaProvider(ModelProvider):
    """Ollama ``/api/chat`` over newline-delimited JSON.

    Args:
        base_url: Server root; defaults to ``$OLLAMA_HOST`` or
            ``http://localhost:11434``.
        http_client: Client to use instead of a private one.
    """

    name = "ollama"
    default_model = "llama2"
    default_tool_format = ToolFormat.LLAMA
    tool_format_families = (
        ("llama", ToolFormat.LLAMA),
        ("deepseek", ToolFormat.DEEPSEEK),
        ("qwen", ToolFormat.QWEN),
        ("hermes", ToolFormat.HERMES),
        ("gemma", ToolFormat.GEMMA),
    )
    fallback_models = (
        _ollama_fallback("llama2", ToolFormat.LLAMA, 4096),
        _ollama_fallback("llama2:13b", ToolFormat.LLAMA, 4096),
        _ollama_fallback("llama2:70b", ToolFormat.LLAMA, 4096),
        _ollama_fallback("codellama", ToolFormat.LLAMA, 100000),
        _ollama_fallback("deepseek-coder", ToolFormat.DEEPSEEK, 16384),
        _ollama_fallback("qwen2.5-coder", ToolFormat.QWEN, 32768),
    )

    def __init__(
        self,
        base_url: str | None = None,
        config: ProviderConfig | None = None,
        api_key: str | None = None,
        token_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            api_key = os.getenv("OLLAMA_API_KEY")
        super().__init__(config=config, api_key=api_key, token_url=token_url)
        self.set_base_url(base_url)
        self.client = http_client or httpx.AsyncClient(timeout=self.config.timeout)

    def set_base_url(self, base_url: str | None = None) -> None:
        base_url = base_url or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA_URL
        if "://" not in base_url:
            base_url = f"http://{base_url}"
        self.base_url = base_url.rstrip("/")

    async def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = await self.auth.get_token(self.client)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def list_models(self) -> list[ModelInfo]:
        try:
            response = await self.client.get(
                f"{self.base_url}/api/tags", headers=await self._headers(),
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch Ollama models: {e}")
            return self._fallback_catalog()

        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            logger.warning(f"Unexpected Ollama model list: {str(data)[:200]}")
            return self._fallback_catalog()
        return [
            ModelInfo(
                id=model["name"],
                name=model["name"],
                provider=self.name,
                supported_tool_formats=list(OLLAMA_FORMATS),
                context_window=OLLAMA_CONTEXT_WINDOWS.get(model["name"], 4096),
            )
            for model in models
            if isinstance(model, dict) and isinstance(model.get("name"), str) and model["name"]
        ]

    def _request_body(self, messages: list[Message | dict], tools: list[Tool]) -> dict:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": data["role"], "content": data.get("content") or ""}
                for data in map(_dump_message, messages)
            ],
            "stream": True,
            "options": {
                "temperature": self.config.temperature,
                "top_p": self.config.top_p,
                "num_predict": self.config.num_predict,
            },
        }
        if tools:
            body["tools"] = [t.chat_schema() for t in tools]
            body["tool_choice"] = "auto"
        return body

    async def _stream(self, messages, tools):
        body = self._request_body(messages, tools)
        headers = await self._headers()
        async with self.client.stream(
            "POST", f"{self.base_url}/api/chat", json=body, headers=headers,
        ) as response:
            if not response.is_success:
                await response.aread()
                raise ProviderError(
                    f"Ollama API error: {response.status_code} "
                    f"{response.reason_phrase} - {response.text}",
                    status_code=response.status_code,
                    reason=response.reason_phrase,
                    body=response.text,
                )
            async with aclosing(parse_ollama_stream(response.aiter_bytes())) as stream:
                async for message in stream:
                    yield message


# ----------------------------------------------------------------------
# OpenAI Responses API
# ----------------------------------------------------------------------

OPENAI_CONTEXT_WINDOWS = {
    "gpt-4.1": 1047576,
    "gpt-4o": 128000,
    "o3": 200000,
    "o4-mini": 200000,
}


def _openai_model(model_id: str) -> ModelInfo:
    context_window = next(
        (size for prefix, size in OPENAI_CONTEXT_WINDOWS.items() if model_id.startswith(prefix)),
        128000,
    )
    return ModelInfo(
        id=model_id,
        name=model_id,
        provider="openai",
        supported_tool_formats=[ToolFormat.OPENAI],
        context_window=context_window,
        max_output_tokens=32768,
    )


def responses_input(messages: list[Message | dict]) -> list[dict]:
    """Translate chat messages into Responses ``input`` items."""
    items: list[dict] = []
    for data in map(_dump_message, messages):
        if data.get("role") == "tool" and data.get("tool_call_id"):
            items.append({
                "type": "function_call_output",
                "call_id": data["tool_call_id"],
                "output": data.get("content") or "",
            })
            continue
        tool_calls = data.get("tool_calls") or []
        if data.get("content") or not tool_calls:
            items.append({"role": data["role"], "content": data.get("content") or ""})
        for call in tool_calls:
            function = call.get("function") or {}
            items.append({
                "type": "function_call",
                "call_id": call.get("id"),
                "name": function.get("name"),
                "arguments": function.get("arguments") or "",
            })
    return items


class OpenAIResponsesProvider(ModelProvider):
    """OpenAI Responses API over Server-Sent Events.

    The SDK is used for transport only; the raw event bytes go through
    the shared stream pipeline.  Retries are disabled so failures surface
    immediately.

    Args:
        api_key: Defaults to ``$OPENAI_API_KEY``.
        base_url: Alternate API root for compatible servers.
        http_client: Client to use instead of a private one.
    """

    name = "openai"
    default_model = "gpt-4.1"
    default_tool_format = ToolFormat.OPENAI
    fallback_models = (
        _openai_model("gpt-4.1"),
        _openai_model("gpt-4.1-mini"),
        _openai_model("gpt-4o"),
        _openai_model("o3"),
        _openai_model("o4-mini"),
    )

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        config: ProviderConfig | None = None,
        token_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        super().__init__(config=config, api_key=api_key, token_url=token_url)
        self.http_client = http_client or httpx.AsyncClient(timeout=self.config.timeout)
        self.client = AsyncOpenAI(
            api_key=api_key or ("DUMMY" if token_url else None),
            base_url=base_url,
            http_client=self.http_client,
            max_retries=0,
            timeout=self.config.timeout,
        )

    def set_api_key(self, api_key: str | None) -> None:
        super().set_api_key(api_key)
        if api_key:
            self.client.api_key = api_key

    def is_paid_mode(self) -> bool:
        return True

    async def _extra_headers(self) -> dict[str, str]:
        if not self.auth.token_url:
            return {}
        token = await self.auth.get_token(self.http_client)
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def list_models(self) -> list[ModelInfo]:
        try:
            page = await self.client.models.list(
                extra_headers=await self._extra_headers(),
            )
        except OpenAIError as e:
            logger.warning(f"Failed to fetch OpenAI models: {e}")
            return self._fallback_catalog()
        return [_openai_model(model.id) for model in page.data]

    async def _stream(self, messages, tools):
        kwargs: dict[str, Any] = {
            "model": self._model,
            "input": responses_input(messages),
            "stream": True,
        }
        if tools:
            kwargs["tools"] = [t.responses_schema() for t in tools]
            kwargs["tool_choice"] = "auto"
        extra_headers = await self._extra_headers()
        if extra_headers:
            kwargs["extra_headers"] = extra_headers

        try:
            async with self.client.responses.with_streaming_response.create(
                **kwargs
            ) as response:
                async with aclosing(
                    parse_responses_stream(response.iter_bytes())
                ) as stream:
                    async for message in stream:
                        yield message
        except APIStatusError as e:
            raise ProviderError(
                f"OpenAI API error: {e.status_code} "
                f"{e.response.reason_phrase} - {e.response.text}",
                status_code=e.status_code,
                reason=e.response.reason_phrase,
                body=e.response.text,
            ) from e


PROVIDERS: dict[str, type[ModelProvider]] = {
    OllamaProvider.name: OllamaProvider,
    OpenAIResponsesProvider.name: OpenAIResponsesProvider,
}


def get_provider(name: str, **kwargs) -> ModelProvider:
    """Build the adapter registered under *name*."""
    try:
        provider_cls = PROVIDERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown provider {name!r}; expected one of {sorted(PROVIDERS)}"
        ) from None
    return provider_cls(**kwargs)
