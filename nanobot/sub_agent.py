"""
Background subagents.

A subagent is a detached, reduced-capability run of the tool loop against a
single task string. ``spawn()`` returns an acknowledgement immediately; the
run executes as an asyncio task and, when it settles, publishes exactly one
announcement on the bus's inbound queue (channel ``system``) addressed to the
conversation that spawned it. The primary agent then summarizes that
announcement for the user.

Each run owns a fresh ``ToolRegistry`` built from ``tool_factory`` and its
own conversation. The ``spawn`` and ``message`` tools are never registered
there, so subagents cannot spawn further subagents or talk to users directly.

Lifecycle of one run (``SubagentTask``):

    spawn() ──> registered in the active map ──> _run() ──> announce ──> removed

Removal happens exactly once, after the announcement is published, whether
the run succeeded or failed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from .llm import Conversation, LLMAdapter, Message
from .logging import get_logger, log_error, tagged
from .message_bus import InboundMessage, MessageBus
from .tool_loop import run_tool_loop
from .tools import Tool, ToolRegistry
from .turn_limits import get_limit


NO_RESULT_FALLBACK = "Task completed but no final response was generated."

_LABEL_MAX_CHARS = 30


@dataclass
class SubagentTask:
    """Bookkeeping for one spawned run."""
    id: str
    label: str
    task: str
    origin_channel: str
    origin_chat_id: str
    started_at: datetime = field(default_factory=datetime.now)
    handle: asyncio.Task | None = None

    @property
    def origin_key(self) -> str:
        return f"{self.origin_channel}:{self.origin_chat_id}"


def default_label(task: str) -> str:
    if len(task) > _LABEL_MAX_CHARS:
        return task[:_LABEL_MAX_CHARS] + "..."
    return task


def build_announcement(label: str, task: str, result: str, status: str) -> str:
    """Wrap a subagent result as an instruction for the primary agent."""
    status_text = "completed successfully" if status == "ok" else "failed"
    return f"""[Subagent '{label}' {status_text}]

Task: {task}

Result:
{result}

Summarize this naturally for the user. Keep it brief (1-2 sentences). Do not mention technical details like "subagent" or task IDs."""


class SubagentManager:
    """Spawns background tool-loop runs and reports their outcome on the bus."""

    def __init__(
        self,
        adapter: LLMAdapter,
        bus: MessageBus,
        *,
        workspace: Path | str | None = None,
        model: str | None = None,
        max_iterations: int | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        tool_factory: Callable[[], Iterable[Tool]] | None = None,
        logger: logging.Logger | None = None,
    ):
        if workspace is None:
            from .config import get_workspace
            workspace = get_workspace()
        self.adapter = adapter
        self.bus = bus
        self.workspace = Path(workspace).expanduser()
        self.model = model or adapter.get_default_model()
        self.max_iterations = (
            max_iterations if max_iterations is not None else get_limit("subagent.max_iterations")
        )
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._tool_factory = tool_factory
        self.logger = logger or get_logger("subagent")
        self._running: dict[str, SubagentTask] = {}

    # ---- Public API ----

    def spawn(
        self,
        task: str,
        label: str | None = None,
        *,
        origin_channel: str = "cli",
        origin_chat_id: str = "direct",
    ) -> str:
        """Start a background run for *task* and return an acknowledgement.

        Must be called from within a running event loop. The run is never
        awaited by the caller.

        Raises:
            ValueError: If *task* is empty or not a string.
        """
        if not isinstance(task, str) or not task.strip():
            raise ValueError("spawn() requires a non-empty task string")

        record = SubagentTask(
            id=uuid4().hex[:8],
            label=label or default_label(task),
            task=task,
            origin_channel=origin_channel or "cli",
            origin_chat_id=origin_chat_id or "direct",
        )
        self._running[record.id] = record
        record.handle = asyncio.get_running_loop().create_task(
            self._run(record), name=f"subagent-{record.id}"
        )
        self.logger.info(f"Spawned [{record.id}]: {record.label}", extra=tagged("delegation"))
        return (
            f"Subagent [{record.label}] started (id: {record.id}). "
            f"I'll notify you when it completes."
        )

    def get_running_count(self) -> int:
        return len(self._running)

    def list_running(self) -> list[dict]:
        """Return ``{"id", "label"}`` for every run that has not announced yet."""
        return [{"id": r.id, "label": r.label} for r in self._running.values()]

    async def wait_all(self) -> None:
        """Wait until every run spawned so far has announced its result."""
        handles = [r.handle for r in list(self._running.values()) if r.handle is not None]
        if handles:
            await asyncio.gather(*handles)

    # ---- Run ----

    async def _run(self, record: SubagentTask) -> None:
        self.logger.info(f"[{record.id}] Starting task: {record.label}")
        try:
            try:
                result, status = await self._execute(record)
            except Exception as e:
                log_error(
                    self.logger,
                    f"[{record.id}] Subagent failed",
                    exc=e,
                    context={"label": record.label, "origin": record.origin_key},
                )
                result, status = f"Error: {e}", "error"
            try:
                self._announce(record, result, status)
            except Exception as e:
                log_error(
                    self.logger,
                    f"[{record.id}] Failed to announce {status} result",
                    exc=e,
                    context={"label": record.label, "origin": record.origin_key},
                )
        finally:
            self._running.pop(record.id, None)

    async def _execute(self, record: SubagentTask) -> tuple[str, str]:
        registry = ToolRegistry(
            self._tool_factory() if self._tool_factory else (),
            logger=self.logger,
        )
        conversation = Conversation([
            Message.system(self._build_prompt(record.task)),
            Message.user(record.task),
        ])
        outcome = await run_tool_loop(
            self.adapter,
            conversation,
            registry,
            max_iterations=self.max_iterations,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            agent_name=f"Subagent {record.id}",
            logger=self.logger,
        )
        if outcome.is_error:
            self.logger.warning(f"[{record.id}] Provider error: {outcome.content}")
            return outcome.content or "Error: provider call failed", "error"
        self.logger.info(f"[{record.id}] Completed after {outcome.iterations} call(s)")
        return outcome.content or NO_RESULT_FALLBACK, "ok"

    def _announce(self, record: SubagentTask, result: str, status: str) -> None:
        self.bus.publish_inbound(
            InboundMessage(
                channel="system",
                sender_id="subagent",
                chat_id=record.origin_key,
                content=build_announcement(record.label, record.task, result, status),
                metadata={"subagent_id": record.id, "label": record.label, "status": status},
            )
        )
        self.logger.info(f"[{record.id}] Announced {status} result to {record.origin_key}")

    def _build_prompt(self, task: str) -> str:
        return f"""# Subagent

You are a subagent spawned by the main agent to complete a specific task.

## Your Task
{task}

## Rules
1. Stay focused - complete only the assigned task, nothing else
2. Your final response will be reported back to the main agent
3. Do not initiate conversations or take on side tasks
4. Be concise but informative in your findings

## What You Can Do
- Use the tools available to you in the workspace
- Complete the task thoroughly

## What You Cannot Do
- Send messages directly to users (no message tool available)
- Spawn other subagents
- Access the main agent's conversation history

## Workspace
Your workspace is at: {self.workspace}

When you have completed the task, provide a clear summary of your findings or actions."""
