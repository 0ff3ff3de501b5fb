"""
Core agent logic - drives model calls and tool execution for each turn.

The AgentLoop answers one user turn at a time per conversation:
    START      system prompt + session history + the new user message
    QUERY      provider call with every registered tool definition
    TOOL_EXEC  requested tools run in order, one result message per call
    TERMINATE  final answer, transport error, or the iteration cap

History is written to the session exactly once per turn, after the loop
settles. When constructed with a MessageBus the loop also owns a
SubagentManager, exposes the ``spawn`` and ``message`` tools, and can run as
a bus consumer (``run()``), answering subagent announcements on behalf of
the conversation that spawned them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from nanobot import config
from .context import ContextBuilder
from .llm import Conversation, LLMAdapter
from .logging import get_logger, log_error, tagged
from .message_bus import InboundMessage, MessageBus, OutboundMessage
from .session import SessionManager
from .sub_agent import SubagentManager
from .tool_handlers import MessageTool, SpawnTool, origin_scope
from .tool_loop import run_tool_loop
from .tools import Tool, ToolRegistry
from .turn_limits import get_limit


NO_RESPONSE = "No response"

SYSTEM_CHANNEL = "system"
_DEFAULT_ORIGIN = ("cli", "direct")


def parse_origin(chat_id: str) -> tuple[str, str]:
    """Split a ``"<channel>:<chat_id>"`` origin; falls back to ``cli:direct``."""
    if ":" in chat_id:
        channel, _, origin_chat = chat_id.partition(":")
        return channel or _DEFAULT_ORIGIN[0], origin_chat or _DEFAULT_ORIGIN[1]
    return _DEFAULT_ORIGIN[0], chat_id or _DEFAULT_ORIGIN[1]


class AgentLoop:
    """Primary agent: one bounded tool loop per user turn."""

    def __init__(
        self,
        adapter: LLMAdapter,
        bus: MessageBus | None = None,
        *,
        workspace: Path | str | None = None,
        model: str | None = None,
        max_iterations: int | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        sessions: SessionManager | None = None,
        tools: Iterable[Tool] = (),
        subagent_tools: Callable[[], Iterable[Tool]] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.adapter = adapter
        self.bus = bus
        self.workspace = Path(workspace or config.get_workspace()).expanduser()
        self.model = model or adapter.get_default_model()
        self.max_iterations = (
            max_iterations if max_iterations is not None else get_limit("agent.max_iterations")
        )
        self.max_tokens = max_tokens if max_tokens is not None else config.MAX_TOKENS
        self.temperature = temperature if temperature is not None else config.TEMPERATURE
        self.logger = logger or get_logger("loop")
        self.sessions = sessions or SessionManager()
        self.context = ContextBuilder(self.workspace)

        external_tools = list(tools)
        self.tools = ToolRegistry(external_tools, logger=get_logger("tools"))

        self.subagents: SubagentManager | None = None
        if bus is not None:
            self.subagents = SubagentManager(
                adapter,
                bus,
                workspace=self.workspace,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                tool_factory=subagent_tools or (lambda: list(external_tools)),
            )
            self.tools.register(SpawnTool(self.subagents))
            self.tools.register(MessageTool(bus))

        self._running = False

    # ---- Direct use ----

    async def process_direct(
        self,
        content: str,
        session_key: str = "cli:direct",
        *,
        channel: str = "cli",
        chat_id: str = "direct",
        media: Sequence[str] | None = None,
    ) -> str:
        """Answer one user turn and return the final text.

        Never raises: unexpected failures are logged and returned as a
        short apology so callers always get a textual answer.
        """
        try:
            return await self._process_turn(content, session_key, channel, chat_id, media)
        except Exception as e:
            log_error(
                self.logger,
                "Turn failed",
                exc=e,
                context={"session": session_key, "content": content[:200]},
            )
            return f"Sorry, I encountered an error: {e}"

    async def _process_turn(
        self,
        content: str,
        session_key: str,
        channel: str,
        chat_id: str,
        media: Sequence[str] | None,
    ) -> str:
        self.logger.info(f"[{session_key}] User: {content[:200]}", extra=tagged("user_message"))
        session = self.sessions.get_or_create(session_key)
        history = session.get_history(get_limit("session.history_messages"))
        conversation = Conversation(self.context.build_messages(history, content, media))

        with origin_scope(channel, chat_id):
            outcome = await run_tool_loop(
                self.adapter,
                conversation,
                self.tools,
                max_iterations=self.max_iterations,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                agent_name="Agent",
                logger=self.logger,
            )

        final = outcome.content
        if final is None:
            if not outcome.hit_cap:
                self.logger.warning(f"[{session_key}] Model returned neither text nor tool calls")
            final = NO_RESPONSE

        session.add_message("user", content)
        session.add_message("assistant", final)
        try:
            self.sessions.save(session)
        except OSError as e:
            self.logger.warning(f"[{session_key}] Failed to save session: {e}")

        self.logger.info(
            f"[{session_key}] Agent: {final[:200]} ({outcome.iterations} call(s), {outcome.tool_calls} tool(s))",
            extra=tagged("agent_response"),
        )
        return final

    # ---- Bus integration ----

    async def process_message(self, msg: InboundMessage) -> OutboundMessage:
        """Answer an inbound bus message.

        ``system`` messages (subagent announcements) are answered on behalf
        of the origin conversation encoded in their ``chat_id``.
        """
        if msg.channel == SYSTEM_CHANNEL:
            channel, chat_id = parse_origin(msg.chat_id)
            self.logger.debug(f"System message from {msg.sender_id} for {channel}:{chat_id}")
        else:
            channel, chat_id = msg.channel, msg.chat_id

        answer = await self.process_direct(
            msg.content,
            f"{channel}:{chat_id}",
            channel=channel,
            chat_id=chat_id,
            media=msg.media or None,
        )
        return OutboundMessage(channel=channel, chat_id=chat_id, content=answer)

    async def run(self) -> None:
        """Consume inbound messages and publish answers until ``stop()``."""
        if self.bus is None:
            raise RuntimeError("AgentLoop.run() requires a MessageBus")
        self._running = True
        self.logger.info("Agent loop started")
        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                response = await self.process_message(msg)
            except Exception as e:
                log_error(self.logger, "Error processing inbound message", exc=e,
                          context={"session": msg.session_key})
                response = OutboundMessage(
                    channel=msg.channel,
                    chat_id=msg.chat_id,
                    content=f"Sorry, I encountered an error: {e}",
                )
            self.bus.publish_outbound(response)
        self.logger.info("Agent loop stopped")

    def stop(self) -> None:
        self._running = False
