"""Tests for the Anthropic adapter (typed content-block wire shape)."""

from types import SimpleNamespace

import pytest

from nanobot.llm.anthropic_adapter import (
    AnthropicAdapter,
    build_anthropic_tools,
    from_anthropic_messages,
    parse_anthropic_response,
    to_anthropic_messages,
)
from nanobot.llm.base import ImagePart, Message, TextPart, ToolCallRequest, ToolDefinition


class FakeAnthropicClient:
    """Stands in for ``anthropic.AsyncAnthropic``."""

    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.calls = []
        self.messages = SimpleNamespace(create=self._create)

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.payload


CONVERSATION = [
    Message.system("You are helpful."),
    Message.user("echo 1"),
    Message.assistant("Calling echo.", [ToolCallRequest("toolu_1", "echo", {"x": 1})]),
    Message.tool_result("toolu_1", "echo", '{"x": 1}'),
    Message.assistant("done"),
]


class TestEncoding:
    def test_system_goes_to_parameter(self):
        system, wire = to_anthropic_messages(CONVERSATION)
        assert system == "You are helpful."
        assert all(m["role"] != "system" for m in wire)

    def test_tool_use_and_tool_result_blocks(self):
        _, wire = to_anthropic_messages(CONVERSATION)
        assert wire[1] == {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Calling echo."},
                {"type": "tool_use", "id": "toolu_1", "name": "echo", "input": {"x": 1}},
            ],
        }
        assert wire[2] == {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": '{"x": 1}'}],
        }

    def test_round_trip_preserves_conversation(self):
        system, wire = to_anthropic_messages(CONVERSATION)
        decoded = from_anthropic_messages(system, wire)
        assert decoded == CONVERSATION

    def test_parallel_results_are_merged_into_one_user_turn(self):
        messages = [
            Message.user("two things"),
            Message.assistant("", [ToolCallRequest("a", "echo", {"x": 1}), ToolCallRequest("b", "echo", {"x": 2})]),
            Message.tool_result("a", "echo", "one"),
            Message.tool_result("b", "echo", "two"),
            Message.user("and now?"),
        ]
        system, wire = to_anthropic_messages(messages)
        assert system is None
        assert [m["role"] for m in wire] == ["user", "assistant", "user"]
        assert [b["type"] for b in wire[2]["content"]] == ["tool_result", "tool_result", "text"]

        decoded = from_anthropic_messages(system, wire)
        assert decoded == messages
        assert [m.tool_call_id for m in decoded if m.role == "tool"] == ["a", "b"]

    def test_empty_assistant_message_is_dropped(self):
        _, wire = to_anthropic_messages([Message.user("hi"), Message.assistant(""), Message.user("again")])
        assert len(wire) == 1
        assert wire[0]["content"] == [{"type": "text", "text": "hi"}, {"type": "text", "text": "again"}]

    def test_image_sources(self):
        msg = Message.user((
            ImagePart("data:image/png;base64,AAAA"),
            ImagePart("https://example.com/cat.jpg"),
            TextPart("compare"),
        ))
        _, wire = to_anthropic_messages([msg])
        blocks = wire[0]["content"]
        assert blocks[0]["source"] == {"type": "base64", "media_type": "image/png", "data": "AAAA"}
        assert blocks[1]["source"] == {"type": "url", "url": "https://example.com/cat.jpg"}
        assert from_anthropic_messages(None, wire) == [msg]

    def test_tools_format(self):
        tools = build_anthropic_tools([ToolDefinition("echo", "Echo", {"type": "object"})])
        assert tools == [{"name": "echo", "description": "Echo", "input_schema": {"type": "object"}}]


class TestParseResponse:
    def test_text_and_tool_use(self):
        response = parse_anthropic_response({
            "content": [
                {"type": "text", "text": "Let me check."},
                {"type": "tool_use", "id": "toolu_9", "name": "echo", "input": {"x": 5}},
            ],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 10, "output_tokens": 5},
        })
        assert response.content == "Let me check."
        assert response.tool_calls == [ToolCallRequest("toolu_9", "echo", {"x": 5})]
        assert response.finish_reason == "tool_calls"
        assert response.usage == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}

    def test_thinking_is_prepended(self):
        response = parse_anthropic_response({
            "content": [
                {"type": "thinking", "thinking": "consider options", "signature": "sig"},
                {"type": "text", "text": "Answer."},
            ],
            "stop_reason": "end_turn",
        })
        assert response.content == "[Thinking: consider options]\n\nAnswer."
        assert response.usage == {}

    def test_redacted_thinking_is_marked(self):
        response = parse_anthropic_response({
            "content": [{"type": "redacted_thinking", "data": "xyz"}, {"type": "text", "text": "ok"}],
            "stop_reason": "end_turn",
        })
        assert response.content == "[Thinking: <redacted>]\n\nok"

    def test_non_dict_input_degrades_to_empty(self):
        response = parse_anthropic_response({
            "content": [{"type": "tool_use", "id": "toolu_1", "name": "echo", "input": "garbage"}],
            "stop_reason": "tool_use",
        })
        assert response.tool_calls[0].arguments == {}

    @pytest.mark.parametrize(
        "native,expected",
        [(None, "stop"), ("end_turn", "stop"), ("stop_sequence", "stop"),
         ("max_tokens", "length"), ("tool_use", "tool_calls"), ("pause_turn", "pause_turn")],
    )
    def test_stop_reasons(self, native, expected):
        response = parse_anthropic_response({"content": [{"type": "text", "text": "x"}], "stop_reason": native})
        assert response.finish_reason == expected


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        client = FakeAnthropicClient(payload={
            "content": [{"type": "text", "text": "hi there"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 1, "output_tokens": 2},
        })
        adapter = AnthropicAdapter(client=client, default_model="anthropic/claude-opus-4-5")
        tools = [ToolDefinition("echo", "Echo", {"type": "object"})]

        response = await adapter.chat([Message.system("sys"), Message.user("hi")], tools)

        assert response.content == "hi there"
        kwargs = client.calls[0]
        assert kwargs["model"] == "claude-opus-4-5"
        assert kwargs["system"] == "sys"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert kwargs["tools"][0]["input_schema"] == {"type": "object"}
        assert kwargs["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_default_model(self):
        client = FakeAnthropicClient(payload={"content": [], "stop_reason": "end_turn"})
        adapter = AnthropicAdapter(client=client)
        response = await adapter.chat([Message.user("hi")])
        assert client.calls[0]["model"] == "claude-sonnet-4-20250514"
        assert "system" not in client.calls[0]
        assert response.content is None

    @pytest.mark.asyncio
    async def test_transport_error_is_contained(self):
        adapter = AnthropicAdapter(client=FakeAnthropicClient(error=TimeoutError("read timed out")))
        response = await adapter.chat([Message.user("hi")])
        assert response.finish_reason == "error"
        assert response.content == "Error calling Anthropic: read timed out"
