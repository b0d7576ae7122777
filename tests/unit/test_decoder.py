"""Unit tests for event classification."""

import json

import pytest

from riptide.decoder import EventDecoder
from riptide.events import (
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

from tests.conftest import (
    args_delta,
    item_added,
    item_done,
    ollama_chunk,
    response_completed,
    text_delta,
)


def decode(payload, event=None, decoder=None):
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return (decoder or EventDecoder()).decode(RawFrame(data=data, event=event))


class TestMalformedFrames:
    def test_non_json_is_unrecognized(self):
        assert decode("not json {") == [Unrecognized(raw="not json {")]

    def test_non_object_json_is_unrecognized(self):
        assert decode("[1, 2]") == [Unrecognized(raw="[1, 2]")]

    def test_unknown_type_is_unrecognized(self):
        [event] = decode({"type": "response.created"})
        assert isinstance(event, Unrecognized)

    def test_untyped_unknown_shape_is_unrecognized(self):
        [event] = decode({"hello": "world"})
        assert isinstance(event, Unrecognized)


class TestResponsesEvents:
    def test_text_delta(self):
        assert decode(text_delta("Hi")) == [TextDelta(text="Hi")]

    def test_function_call_added_with_call_id(self):
        [event] = decode(item_added("fc_1", "get_weather", call_id="call_1", output_index=2))
        assert event == ToolCallStarted(
            item_id="fc_1", call_id="call_1", name="get_weather",
            arguments="", output_index=2,
        )

    def test_function_call_added_without_call_id(self):
        [event] = decode(item_added("fc_1", "get_weather"))
        assert event.item_id == "fc_1"
        assert event.call_id is None

    def test_item_without_id_falls_back_to_output_index(self):
        payload = item_added("fc_1", "f", output_index=3)
        del payload["item"]["id"]
        [event] = decode(payload)
        assert event.item_id == "output_3"

    def test_non_function_item_added_is_unrecognized(self):
        payload = {
            "type": "response.output_item.added",
            "output_index": 0,
            "item": {"id": "msg_1", "type": "message"},
        }
        [event] = decode(payload)
        assert isinstance(event, Unrecognized)

    def test_arguments_delta(self):
        assert decode(args_delta("fc_1", '{"a":', output_index=1)) == [
            ToolCallArgsDelta(item_id="fc_1", delta='{"a":', output_index=1)
        ]

    def test_arguments_done_declares_arguments(self):
        payload = {
            "type": "response.function_call_arguments.done",
            "item_id": "fc_1",
            "output_index": 0,
            "arguments": '{"a":1}',
        }
        assert decode(payload) == [
            ToolCallCompleted(item_id="fc_1", arguments='{"a":1}', output_index=0)
        ]

    def test_output_item_done(self):
        [event] = decode(item_done("fc_1", "f", arguments="{}", call_id="call_1"))
        assert event == ToolCallCompleted(
            item_id="fc_1", call_id="call_1", name="f",
            arguments="{}", output_index=0,
        )

    def test_output_item_done_without_arguments(self):
        [event] = decode(item_done("fc_1", "f"))
        assert event.arguments is None

    def test_completed_reports_renamed_usage_then_done(self):
        assert decode(response_completed(62, 23, 85)) == [
            UsageReported(prompt_tokens=62, completion_tokens=23, total_tokens=85),
            ResponseDone(),
        ]

    def test_completed_computes_missing_total(self):
        payload = response_completed()
        del payload["response"]["usage"]["total_tokens"]
        usage, _ = decode(payload)
        assert usage.total_tokens == 85

    def test_completed_without_usage(self):
        assert decode({"type": "response.completed", "response": {}}) == [ResponseDone()]

    def test_failed_reports_error_and_ends(self):
        payload = {
            "type": "response.failed",
            "response": {"error": {"code": "server_error", "message": "boom"}},
        }
        assert decode(payload) == [
            ErrorReported(message="boom", code="server_error"),
            ResponseDone(),
        ]

    def test_error_event(self):
        payload = {"type": "error", "code": "rate_limit", "message": "slow down"}
        assert decode(payload) == [ErrorReported(message="slow down", code="rate_limit")]


class TestLabelPrecedence:
    def test_payload_type_wins_over_sse_label(self):
        [event] = decode(text_delta("x"), event="response.output_item.added")
        assert event == TextDelta(text="x")

    def test_sse_label_used_when_type_missing(self):
        [event] = decode({"delta": "x"}, event="response.output_text.delta")
        assert event == TextDelta(text="x")


class TestOllamaChunks:
    def test_content_chunk(self):
        assert decode(ollama_chunk("Hello")) == [TextDelta(text="Hello")]

    def test_empty_content_chunk_yields_nothing(self):
        assert decode(ollama_chunk("")) == []

    def test_done_chunk_reports_usage(self):
        events = decode(ollama_chunk(done=True, prompt_eval_count=62, eval_count=23))
        assert events == [
            UsageReported(prompt_tokens=62, completion_tokens=23, total_tokens=85),
            ResponseDone(),
        ]

    def test_done_chunk_missing_counts(self):
        usage, done = decode(ollama_chunk(done=True))
        assert usage == UsageReported(0, 0, 0)
        assert done == ResponseDone()

    def test_tool_calls_open_and_close_together(self):
        decoder = EventDecoder()
        chunk = ollama_chunk(tool_calls=[
            {"function": {"name": "ls", "arguments": {"path": "."}}},
            {"id": "call_x", "function": {"name": "cat", "arguments": '{"f": 1}'}},
        ])
        events = decode(chunk, decoder=decoder)
        assert events == [
            ToolCallStarted(item_id="call_0", call_id=None, name="ls"),
            ToolCallCompleted(item_id="call_0", arguments='{"path": "."}'),
            ToolCallStarted(item_id="call_x", call_id="call_x", name="cat"),
            ToolCallCompleted(item_id="call_x", arguments='{"f": 1}'),
        ]

    def test_synthetic_ids_are_unique_within_a_stream(self):
        decoder = EventDecoder()
        chunk = ollama_chunk(tool_calls=[{"function": {"name": "ls", "arguments": {}}}])
        first = decode(chunk, decoder=decoder)
        second = decode(chunk, decoder=decoder)
        assert first[0].item_id != second[0].item_id

    def test_error_payload(self):
        assert decode({"error": "model not found"}) == [
            ErrorReported(message="model not found"),
            ResponseDone(),
        ]


class TestMalformedFields:
    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "response.output_item.added", "output_index": 0, "item": "x"},
            {"type": "response.output_item.done", "output_index": 0, "item": ["x"]},
            {"type": "response.output_text.delta", "delta": 5},
            {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": {"a": 1}},
            {"type": "response.function_call_arguments.delta", "item_id": ["fc_1"], "delta": "x"},
            {"type": "response.failed", "response": {"error": "boom"}},
            {"type": 7, "delta": "x"},
            {"message": "hi", "done": False},
            {"message": {"role": "assistant", "content": 5}, "done": False},
            {"message": {"content": "", "tool_calls": "ls"}, "done": False},
            {"message": {"content": "", "tool_calls": ["ls"]}, "done": False},
            {"message": {"content": "", "tool_calls": [{"function": "ls"}]}, "done": False},
            {"message": {"content": "", "tool_calls": [{"function": {"name": 3}}]}, "done": False},
        ],
        ids=[
            "item_str", "item_list", "text_delta_int", "args_delta_object",
            "item_id_list", "error_str", "type_int",
            "message_str", "content_int", "tool_calls_str", "tool_call_str",
            "function_str", "function_name_int",
        ],
    )
    def test_wrong_field_types_are_unrecognized(self, payload):
        [event] = decode(payload)
        assert isinstance(event, Unrecognized)
        assert event.raw == json.dumps(payload)

    def test_integer_item_id_is_stringified(self):
        payload = item_added("fc_1", "f", call_id="call_1")
        payload["item"]["id"] = 12
        payload["item"]["call_id"] = 34
        [event] = decode(payload)
        assert event.item_id == "12"
        assert event.call_id == "34"

    def test_integer_ollama_call_id_is_stringified(self):
        chunk = ollama_chunk(tool_calls=[{"id": 12, "function": {"name": "ls", "arguments": {}}}])
        started, completed = decode(chunk)
        assert started.item_id == started.call_id == "12"
        assert completed.item_id == "12"

    def test_non_integer_output_index_is_ignored(self):
        [event] = decode(args_delta("fc_1", "x", output_index="1"))
        assert event.output_index is None

    def test_decoder_keeps_working_after_bad_frame(self):
        decoder = EventDecoder()
        decode({"message": "hi"}, decoder=decoder)
        assert decode(ollama_chunk("ok"), decoder=decoder) == [TextDelta(text="ok")]

    def test_completed_with_unusable_body_still_ends(self):
        assert decode({"type": "response.completed", "response": []}) == [ResponseDone()]
