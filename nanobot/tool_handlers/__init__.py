"""Built-in tools owned by the agent core.

Only the primary agent registers these; subagent registries never do.

The conversation currently being processed is published through
``CURRENT_ORIGIN`` so handlers can address replies without sharing state
between concurrent conversations.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, NamedTuple


class Origin(NamedTuple):
    channel: str
    chat_id: str


CURRENT_ORIGIN: ContextVar[Origin | None] = ContextVar("nanobot_current_origin", default=None)


@contextmanager
def origin_scope(channel: str, chat_id: str) -> Iterator[Origin]:
    """Set ``CURRENT_ORIGIN`` for the duration of a turn."""
    origin = Origin(channel, chat_id)
    token = CURRENT_ORIGIN.set(origin)
    try:
        yield origin
    finally:
        CURRENT_ORIGIN.reset(token)


from nanobot.tool_handlers.delegation import SpawnTool  # noqa: E402
from nanobot.tool_handlers.messaging import MessageTool  # noqa: E402
