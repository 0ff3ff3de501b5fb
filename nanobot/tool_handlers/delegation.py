"""Delegation tool handler: hand a task to a background subagent."""

from __future__ import annotations

from typing import TYPE_CHECKING

from nanobot.tool_handlers import CURRENT_ORIGIN
from nanobot.tools import Tool

if TYPE_CHECKING:
    from nanobot.sub_agent import SubagentManager


class SpawnTool(Tool):
    name = "spawn"
    description = (
        "Spawn a subagent to handle a task in the background. Use this for "
        "complex or time-consuming tasks that can run independently. The "
        "subagent will complete the task and report back when done."
    )
    parameters = {
        "type": "object",
        "properties": {
            "task": {"type": "string", "description": "The task for the subagent to complete"},
            "label": {"type": "string", "description": "Optional short label for the task (for display)"},
        },
        "required": ["task"],
    }

    def __init__(self, manager: "SubagentManager"):
        self._manager = manager

    async def execute(self, arguments: dict) -> str:
        origin = CURRENT_ORIGIN.get()
        kwargs = {}
        if origin is not None:
            kwargs = {"origin_channel": origin.channel, "origin_chat_id": origin.chat_id}
        return self._manager.spawn(arguments.get("task", ""), arguments.get("label"), **kwargs)
