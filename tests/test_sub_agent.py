"""Tests for background subagents."""

import asyncio
import logging
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from nanobot.llm.base import LLMAdapter, LLMResponse
from nanobot.message_bus import MessageBus
from nanobot.sub_agent import NO_RESULT_FALLBACK, SubagentManager, default_label

from conftest import ScriptedAdapter, answer, tool_call


class GatedAdapter(LLMAdapter):
    """Answers only after ``release`` is set, so runs stay in flight."""

    backend = "gated"
    display_name = "Gated"
    default_model = "gated-model"

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def _complete(self, messages, tools, *, model, max_tokens, temperature):
        await self.release.wait()
        return LLMResponse(content=f"finished: {messages[-1].text}")


def _manager(adapter, bus, workspace, **kwargs):
    return SubagentManager(adapter, bus, workspace=workspace, **kwargs)


@pytest.mark.asyncio
async def test_spawn_acknowledges_immediately(workspace):
    bus = MessageBus()
    manager = _manager(ScriptedAdapter([answer("all done")]), bus, workspace)

    ack = manager.spawn("summarise the report", label="report")

    assert re.fullmatch(
        r"Subagent \[report\] started \(id: [0-9a-f]{8}\)\. I'll notify you when it completes\.", ack
    )
    assert manager.get_running_count() == 1
    assert bus.inbound_size == 0

    await manager.wait_all()
    assert manager.get_running_count() == 0
    assert bus.inbound_size == 1


@pytest.mark.asyncio
async def test_successful_announcement(workspace):
    bus = MessageBus()
    manager = _manager(ScriptedAdapter([answer("The report says 42.")]), bus, workspace)

    manager.spawn("read report.txt", origin_channel="feishu", origin_chat_id="chat-7")
    await manager.wait_all()

    msg = await bus.consume_inbound()
    assert msg.channel == "system"
    assert msg.sender_id == "subagent"
    assert msg.chat_id == "feishu:chat-7"
    assert msg.metadata["status"] == "ok"
    assert msg.metadata["label"] == "read report.txt"
    assert len(msg.metadata["subagent_id"]) == 8
    assert msg.content.startswith("[Subagent 'read report.txt' completed successfully]")
    assert "Task: read report.txt" in msg.content
    assert "Result:\nThe report says 42." in msg.content
    assert "Summarize this naturally for the user." in msg.content


@pytest.mark.asyncio
async def test_provider_failure_announces_error(workspace):
    bus = MessageBus()
    task = "Fetch https://example.com and count the links"
    manager = _manager(ScriptedAdapter([ConnectionError("network down")]), bus, workspace)

    manager.spawn(task)
    await manager.wait_all()

    assert bus.inbound_size == 1
    msg = await bus.consume_inbound()
    assert msg.metadata["status"] == "error"
    assert f"Task: {task}" in msg.content
    assert "failed]" in msg.content
    assert "Error calling Scripted: network down" in msg.content
    assert manager.get_running_count() == 0


@pytest.mark.asyncio
async def test_raising_adapter_announces_error(workspace):
    bus = MessageBus()
    adapter = MagicMock()
    adapter.get_default_model.return_value = "mock-model"
    adapter.chat = AsyncMock(side_effect=RuntimeError("kaput"))
    manager = _manager(adapter, bus, workspace)

    manager.spawn("do the thing")
    await manager.wait_all()

    assert bus.inbound_size == 1
    msg = await bus.consume_inbound()
    assert msg.metadata["status"] == "error"
    assert "Result:\nError: kaput" in msg.content
    assert "Task: do the thing" in msg.content


@pytest.mark.asyncio
async def test_cap_without_answer_uses_fallback(workspace, echo_tool):
    bus = MessageBus()
    adapter = ScriptedAdapter([tool_call("t1", "echo", x=1)])
    manager = _manager(adapter, bus, workspace, max_iterations=2, tool_factory=lambda: [echo_tool])

    manager.spawn("loop forever")
    await manager.wait_all()

    assert len(adapter.calls) == 2
    msg = await bus.consume_inbound()
    assert msg.metadata["status"] == "ok"
    assert NO_RESULT_FALLBACK in msg.content


@pytest.mark.asyncio
async def test_private_registry_and_prompt(workspace, echo_tool):
    bus = MessageBus()
    adapter = ScriptedAdapter([answer("ok")])
    manager = _manager(adapter, bus, workspace, tool_factory=lambda: [echo_tool])

    manager.spawn("check the weather")
    await manager.wait_all()

    call = adapter.calls[0]
    assert [t.name for t in call.tools] == ["echo"]
    system, user = call.messages
    assert system.role == "system"
    assert "## Your Task\ncheck the weather" in system.text
    assert str(workspace) in system.text
    assert user.text == "check the weather"


@pytest.mark.asyncio
async def test_concurrent_runs_are_tracked(workspace):
    bus = MessageBus()
    adapter = GatedAdapter()
    manager = _manager(adapter, bus, workspace)

    manager.spawn("first job", label="one")
    manager.spawn("second job", label="two")
    await asyncio.sleep(0)

    assert manager.get_running_count() == 2
    assert sorted(r["label"] for r in manager.list_running()) == ["one", "two"]

    adapter.release.set()
    await manager.wait_all()

    assert manager.get_running_count() == 0
    contents = sorted([(await bus.consume_inbound()).content for _ in range(2)])
    assert "finished: first job" in contents[0]
    assert "finished: second job" in contents[1]


@pytest.mark.asyncio
async def test_empty_task_rejected(workspace):
    manager = _manager(ScriptedAdapter([answer("ok")]), MessageBus(), workspace)
    with pytest.raises(ValueError):
        manager.spawn("   ")
    assert manager.get_running_count() == 0


def test_default_label_truncation():
    task = "x" * 45
    assert default_label(task) == "x" * 30 + "..."
    assert default_label("short") == "short"


@pytest.mark.asyncio
async def test_zero_iterations_makes_no_provider_calls(workspace, echo_tool):
    bus = MessageBus()
    adapter = ScriptedAdapter([tool_call("t1", "echo", x=1)])
    manager = _manager(adapter, bus, workspace, max_iterations=0, tool_factory=lambda: [echo_tool])

    manager.spawn("x")
    await manager.wait_all()

    assert adapter.calls == []
    msg = await bus.consume_inbound()
    assert msg.metadata["status"] == "ok"
    assert NO_RESULT_FALLBACK in msg.content


@pytest.mark.asyncio
async def test_failed_announcement_is_logged(workspace, caplog):
    bus = MessageBus()
    bus.publish_inbound = MagicMock(side_effect=RuntimeError("queue closed"))
    manager = _manager(ScriptedAdapter([answer("done")]), bus, workspace)

    with caplog.at_level(logging.ERROR, logger="nanobot"):
        manager.spawn("report back", label="rb")
        await manager.wait_all()

    bus.publish_inbound.assert_called_once()
    assert manager.get_running_count() == 0
    assert "Failed to announce ok result" in caplog.text
    assert "queue closed" in caplog.text
