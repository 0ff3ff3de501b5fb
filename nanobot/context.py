"""
System prompt and message assembly for the primary agent.

The system prompt is built fresh for every turn from:
    1. the identity section (name, current time, workspace paths)
    2. bootstrap files found in the workspace root
    3. long-term memory (``memory/MEMORY.md``)
separated by horizontal rules.
"""

from __future__ import annotations

import base64
import mimetypes
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from .llm import ImagePart, Message, TextPart


BOOTSTRAP_FILES = ("AGENTS.md", "SOUL.md", "USER.md", "TOOLS.md", "IDENTITY.md")

_SECTION_SEPARATOR = "\n\n---\n\n"


class ContextBuilder:
    """Builds the system prompt and message list for each agent turn."""

    def __init__(self, workspace: Path | str):
        self.workspace = Path(workspace).expanduser()

    @property
    def memory_file(self) -> Path:
        return self.workspace / "memory" / "MEMORY.md"

    def build_system_prompt(self) -> str:
        parts = [self._identity()]

        bootstrap = self._load_bootstrap_files()
        if bootstrap:
            parts.append(bootstrap)

        memory = self._read(self.memory_file)
        if memory:
            parts.append(f"# Memory\n\n{memory}")

        return _SECTION_SEPARATOR.join(parts)

    def _identity(self) -> str:
        now = datetime.now().strftime("%Y-%m-%d %H:%M (%A)")
        ws = self.workspace
        return f"""# nanobot

You are nanobot, a helpful AI assistant. You have access to tools that allow you to:
- Read, write, and edit files
- Execute shell commands
- Search the web and fetch web pages
- Send messages to users on chat channels
- Spawn subagents for complex background tasks

## Current Time
{now}

## Workspace
Your workspace is at: {ws}
- Memory files: {ws}/memory/MEMORY.md
- Daily notes: {ws}/memory/YYYY-MM-DD.md

IMPORTANT: When responding to direct questions or conversations, reply directly with your text response.
Only use the 'message' tool when you need to send a message to a specific chat channel.
For normal conversation, just respond with text - do not call the message tool.

Always be helpful, accurate, and concise. When using tools, explain what you're doing.
When remembering something, write to {ws}/memory/MEMORY.md"""

    def _load_bootstrap_files(self) -> str:
        parts = []
        for filename in BOOTSTRAP_FILES:
            content = self._read(self.workspace / filename)
            if content is not None:
                parts.append(f"## {filename}\n\n{content}")
        return "\n\n".join(parts)

    @staticmethod
    def _read(path: Path) -> str | None:
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def build_messages(
        self,
        history: Sequence[Message],
        current_message: str,
        media: Sequence[str] | None = None,
    ) -> list[Message]:
        """Return system prompt + history + the new user turn."""
        return [
            Message.system(self.build_system_prompt()),
            *history,
            Message.user(self._build_user_content(current_message, media)),
        ]

    def _build_user_content(self, text: str, media: Sequence[str] | None):
        """Images first, then the text; plain text when no image could be read."""
        images = [img for img in (_load_image(p) for p in media or ()) if img is not None]
        if not images:
            return text
        return (*images, TextPart(text=text))


def _load_image(path: str) -> ImagePart | None:
    file = Path(path)
    mime_type, _ = mimetypes.guess_type(file.name)
    if not mime_type or not mime_type.startswith("image/") or not file.is_file():
        return None
    try:
        data = file.read_bytes()
    except OSError:
        return None
    return ImagePart(url=f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}")
