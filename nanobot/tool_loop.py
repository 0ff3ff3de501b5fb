"""
Reusable tool-calling loop shared by the primary agent and background subagents.

One iteration is one provider call. A reply with tool calls is appended to
the conversation as a single assistant message, then every requested tool
runs in the order the provider returned them and contributes exactly one
tool-result message (failures included) before the next call. A reply
without tool calls, or a transport error, ends the loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .llm import Conversation, LLMAdapter, LLMResponse, Message
from .logging import get_logger, tagged
from .tools import ToolRegistry


@dataclass
class LoopResult:
    """Outcome of ``run_tool_loop``.

    Attributes:
        content: Final answer text; None when the loop ran out of iterations
            or the model's last reply was empty.
        iterations: Provider calls made.
        tool_calls: Tool invocations executed.
        hit_cap: True when ``max_iterations`` ran out while the model was
            still requesting tools.
        response: The last provider reply, if any.
    """
    content: str | None
    iterations: int = 0
    tool_calls: int = 0
    hit_cap: bool = False
    response: LLMResponse | None = None

    @property
    def is_error(self) -> bool:
        return self.response is not None and self.response.is_error


async def run_tool_loop(
    adapter: LLMAdapter,
    conversation: Conversation,
    registry: ToolRegistry,
    *,
    max_iterations: int,
    model: str | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
    agent_name: str = "Agent",
    logger: logging.Logger | None = None,
) -> LoopResult:
    """Drive QUERY/TOOL_EXEC turns on *conversation* until a terminal reply.

    Args:
        adapter: Provider used for every QUERY.
        conversation: Canonical conversation; assistant and tool messages are
            appended to it in place.
        registry: Tools the model may call.
        max_iterations: Hard cap on provider calls.
        agent_name: Label for log messages.

    Returns:
        A ``LoopResult``. Running out of iterations is reported through
        ``hit_cap``, not raised.
    """
    logger = logger or get_logger("loop")
    definitions = registry.get_definitions() or None
    result = LoopResult(content=None)

    while result.iterations < max_iterations:
        result.iterations += 1
        response = await adapter.chat(
            conversation,
            definitions,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        result.response = response
        if response.usage:
            logger.debug(f"[{agent_name}] usage: {response.usage}", extra=tagged("token_usage"))

        if response.is_error:
            logger.warning(f"[{agent_name}] Provider error: {response.content}")
            result.content = response.content
            return result

        if not response.has_tool_calls:
            result.content = response.content or None
            return result

        if response.content:
            logger.debug(f"[{agent_name}] {response.content}", extra=tagged("thinking"))
        conversation.append(Message.assistant(response.content, response.tool_calls))
        for tc in response.tool_calls:
            logger.debug(f"[{agent_name}] Tool: {tc.name}({tc.arguments})", extra=tagged("tool_call"))
            output = await registry.execute(tc.name, tc.arguments)
            conversation.append(Message.tool_result(tc.id, tc.name, output))
            result.tool_calls += 1

    logger.warning(f"[{agent_name}] Reached max iterations ({max_iterations}) without a final answer")
    result.hit_cap = True
    return result
