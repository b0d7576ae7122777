"""Streaming chat example against Ollama or the OpenAI Responses API.

Demonstrates:
- Listing models and selecting one on a provider session
- Streaming text, tool calls and usage from stream_chat_completion
- Sending a tool result back with the streamed call id

Usage:
    uv run examples/chat_stream.py --provider ollama --model llama2
    uv run --env-file=.env examples/chat_stream.py --provider openai --model gpt-4.1-mini --trace
"""

import argparse
import asyncio
import json
import logging
from datetime import datetime, timezone

from riptide.message import (
    Message,
    MessageRole,
    ToolCallRequestMessage,
    ToolCallResultMessage,
)
from riptide.provider import ProviderError, get_provider
from riptide.tools import Tool


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from riptide.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


def current_time():
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


TOOLS = {"current_time": current_time}


async def stream_turn(provider, messages, tools):
    """Print one streamed reply; return the tool calls it asked for."""
    calls = []
    async for chunk in provider.stream_chat_completion(messages, tools=tools):
        if chunk.content:
            print(chunk.content, end="", flush=True)
        for call in chunk.tool_calls or []:
            print(f"\n[tool call] {call.function.name}({call.function.arguments})")
            calls.append(call)
        if chunk.usage:
            print(
                f"\n[usage] prompt={chunk.usage.prompt_tokens} "
                f"completion={chunk.usage.completion_tokens} "
                f"total={chunk.usage.total_tokens}"
            )
    print()
    return calls


async def main():
    parser = argparse.ArgumentParser(description="Streaming chat")
    parser.add_argument("--provider", choices=["ollama", "openai"], default="ollama")
    parser.add_argument("--model", default=None)
    parser.add_argument("--url", default=None)
    parser.add_argument("--trace", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if args.trace:
        setup_tracing("chat-stream")

    provider = get_provider(args.provider, base_url=args.url)
    if args.model:
        provider.set_model(args.model)

    print("Available models:")
    for model in await provider.list_models():
        print(f"  - {model.name} ({model.provider})")
    print(f"\nUsing model: {provider.get_current_model()}")
    print(f"Tool format: {provider.resolve_tool_format().value}\n")

    tools = [Tool.from_function(current_time)]
    messages = [
        Message(
            role=MessageRole.USER,
            content="What time is it right now? Use the current_time tool.",
        )
    ]

    try:
        calls = await stream_turn(provider, messages, tools)
        if not calls:
            return

        messages.append(
            ToolCallRequestMessage(role=MessageRole.ASSISTANT, tool_calls=calls)
        )
        for call in calls:
            kwargs = json.loads(call.function.arguments or "{}")
            result = TOOLS[call.function.name](**kwargs)
            messages.append(ToolCallResultMessage(
                role=MessageRole.TOOL, content=str(result), tool_call_id=call.id,
            ))
        await stream_turn(provider, messages, tools)
    except ProviderError as e:
        print(f"Error: {e}")
        if args.provider == "ollama":
            print("Make sure Ollama is running: ollama serve")


if __name__ == "__main__":
    asyncio.run(main())
