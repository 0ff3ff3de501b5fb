"""Shared fixtures: scripted in-memory adapter, simple tools, isolated data dirs."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from nanobot import config, turn_limits
from nanobot.llm.base import LLMAdapter, LLMResponse, Message, ToolCallRequest
from nanobot.session import SessionManager
from nanobot.tools import FunctionTool, ToolRegistry


@dataclass
class ScriptedCall:
    messages: list[Message]
    tools: list = field(default_factory=list)
    model: str = ""


class ScriptedAdapter(LLMAdapter):
    """Adapter that replays a fixed script of responses.

    Script items are ``LLMResponse`` objects or exceptions (raised from the
    backend call, so ``chat()`` turns them into error responses). Once the
    script runs out the last item repeats.
    """

    backend = "scripted"
    display_name = "Scripted"
    default_model = "scripted-model"

    def __init__(self, script):
        super().__init__()
        self.script = list(script)
        self.calls: list[ScriptedCall] = []

    async def _complete(self, messages, tools, *, model, max_tokens, temperature):
        self.calls.append(ScriptedCall(messages=list(messages), tools=list(tools), model=model))
        item = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(item, BaseException):
            raise item
        return item


def tool_call(call_id: str, name: str, **arguments) -> LLMResponse:
    """Response requesting a single tool call."""
    return LLMResponse(
        tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool_calls",
    )


def answer(text: str) -> LLMResponse:
    return LLMResponse(content=text, finish_reason="stop")


ECHO_SCHEMA = {
    "type": "object",
    "properties": {"x": {"type": "integer"}},
}


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the data dir at a temp directory and ignore any user config files."""
    monkeypatch.setenv("NANOBOT_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(config, "_user_config", {})
    config._reset_data_dir()
    turn_limits.reload()
    yield
    config._reset_data_dir()


@pytest.fixture
def echo_tool():
    return FunctionTool("echo", "Echo the arguments back", ECHO_SCHEMA, lambda **kwargs: kwargs)


@pytest.fixture
def registry(echo_tool):
    return ToolRegistry([echo_tool])


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def sessions(tmp_path):
    return SessionManager(tmp_path / "sessions")
