import json
from collections.abc import Callable

import httpx
import pytest

from riptide.provider import OllamaProvider, OpenAIResponsesProvider


# ---------------------------------------------------------------------------
# Byte sources
# ---------------------------------------------------------------------------

class FakeByteStream:
    """Async byte source that replays pre-split chunks.

    Records how many chunks were read and whether it was closed, so tests
    can check that the pipeline releases its source.
    """

    def __init__(self, chunks: list[str | bytes]):
        self.chunks = [
            c.encode("utf-8") if isinstance(c, str) else c for c in chunks
        ]
        self.reads = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self.closed or self.reads >= len(self.chunks):
            raise StopAsyncIteration
        chunk = self.chunks[self.reads]
        self.reads += 1
        return chunk

    async def aclose(self) -> None:
        self.closed = True


async def collect(stream) -> list:
    return [item async for item in stream]


# ---------------------------------------------------------------------------
# Wire-format builders
# ---------------------------------------------------------------------------

def sse(payload: dict | str, event: str | None = None) -> str:
    """One SSE event block."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {data}\n\n"


def ndjson(payload: dict) -> str:
    return json.dumps(payload) + "\n"


def item_added(item_id, name, call_id=None, output_index=0) -> dict:
    item = {
        "id": item_id,
        "type": "function_call",
        "status": "in_progress",
        "arguments": "",
        "name": name,
    }
    if call_id is not None:
        item["call_id"] = call_id
    return {
        "type": "response.output_item.added",
        "output_index": output_index,
        "item": item,
    }


def args_delta(item_id, delta, output_index=0) -> dict:
    return {
        "type": "response.function_call_arguments.delta",
        "item_id": item_id,
        "output_index": output_index,
        "delta": delta,
    }


def item_done(item_id, name, arguments=None, call_id=None, output_index=0) -> dict:
    item = {"id": item_id, "type": "function_call", "status": "completed", "name": name}
    if arguments is not None:
        item["arguments"] = arguments
    if call_id is not None:
        item["call_id"] = call_id
    return {
        "type": "response.output_item.done",
        "output_index": output_index,
        "item": item,
    }


def text_delta(text: str) -> dict:
    return {"type": "response.output_text.delta", "delta": text}


def response_completed(input_tokens=62, output_tokens=23, total_tokens=85) -> dict:
    return {
        "type": "response.completed",
        "response": {
            "id": "resp_123",
            "status": "completed",
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "total_tokens": total_tokens,
            },
        },
    }


def ollama_chunk(content="", done=False, tool_calls=None, **extra) -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {"model": "llama2", "message": message, "done": done, **extra}


# ---------------------------------------------------------------------------
# Mock HTTP backend
# ---------------------------------------------------------------------------

class MockBackend:
    """Routes requests for an ``httpx.MockTransport``. No network calls.

    Routes map ``(method, path)`` to a factory so every request gets a
    fresh response.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def route(self, method: str, path: str, factory) -> None:
        self.routes[(method, path)] = factory

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        factory = self.routes.get((request.method, request.url.path))
        if factory is None:
            return httpx.Response(404, text="no route")
        return factory(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("OLLAMA_API_KEY", "OLLAMA_HOST", "OPENAI_API_KEY"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def backend():
    return MockBackend()


@pytest.fixture
def ollama(backend):
    return OllamaProvider(base_url="http://ollama.test", http_client=backend.client())


@pytest.fixture
def openai_provider(backend):
    return OpenAIResponsesProvider(
        api_key="test-key",
        base_url="http://openai.test/v1",
        http_client=backend.client(),
    )
