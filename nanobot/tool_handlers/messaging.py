"""Messaging tool handler: push a message straight onto an outbound channel."""

from __future__ import annotations

from nanobot.message_bus import MessageBus, OutboundMessage
from nanobot.tool_handlers import CURRENT_ORIGIN
from nanobot.tools import Tool


class MessageTool(Tool):
    name = "message"
    description = (
        "Send a message to the user on a chat channel. Only use this to reach "
        "a specific channel; for normal replies just answer with text."
    )
    parameters = {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "The message content to send"},
            "channel": {"type": "string", "description": "Optional: target channel (e.g. feishu)"},
            "chat_id": {"type": "string", "description": "Optional: target chat/user ID"},
        },
        "required": ["content"],
    }

    def __init__(self, bus: MessageBus):
        self._bus = bus

    async def execute(self, arguments: dict) -> str:
        origin = CURRENT_ORIGIN.get()
        channel = arguments.get("channel") or (origin.channel if origin else None)
        chat_id = arguments.get("chat_id") or (origin.chat_id if origin else None)
        if not channel or not chat_id:
            return "Error: No target channel/chat specified"

        self._bus.publish_outbound(
            OutboundMessage(channel=channel, chat_id=chat_id, content=arguments.get("content", ""))
        )
        return f"Message sent to {channel}:{chat_id}"
