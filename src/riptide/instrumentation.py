"""Optional OpenTelemetry instrumentation for riptide.

Call ``instrument()`` once at startup to trace every chat stream.
Requires ``opentelemetry-api`` to be installed; streaming works
identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "riptide") -> None:
    """Enable OpenTelemetry tracing for provider streams.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install riptide[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        from riptide.instrumentation import instrument
        instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install riptide[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("riptide instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def completion_span(system: str, model: str):
    """Wrap one streamed chat completion in a ``chat`` span.

    The body runs inside an async generator that suspends between chunks,
    so the span is started without being made current and is ended
    explicitly.  Exceptions escaping the body are recorded on the span.
    """
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    span = _tracer.start_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": system,
            "gen_ai.request.model": model,
        },
    )
    try:
        yield span
    except Exception as e:
        record_error(span, e)
        raise
    finally:
        span.end()


def record_usage(span, usage) -> None:
    """Set token-usage attributes on a span."""
    if span is None or usage is None:
        return
    if getattr(usage, "prompt_tokens", None) is not None:
        span.set_attribute(
            "gen_ai.usage.input_tokens",
            usage.prompt_tokens,
        )
    if getattr(usage, "completion_tokens", None) is not None:
        span.set_attribute(
            "gen_ai.usage.output_tokens",
            usage.completion_tokens,
        )


def record_tool_call(span, tool_call) -> None:
    """Add a span event for a tool call assembled from the stream."""
    if span is None:
        return
    span.add_event(
        "gen_ai.tool.call",
        attributes={
            "gen_ai.tool.name": tool_call.function.name,
            "gen_ai.tool.call.id": tool_call.id,
        },
    )


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )
