"""
In-process message bus between chat channels and the agent.

Two independent FIFO directions:

    channel ── publish_inbound() ──> [inbound]  ── consume_inbound() ──> AgentLoop
    AgentLoop ── publish_outbound() ──> [outbound] ── dispatch_outbound() ──> subscribers

Publishing never blocks; consuming suspends until an item exists. The
outbound dispatcher delivers each message to every subscriber of its
channel, in subscription order; a failing subscriber is logged and skipped.
There is no acknowledgement or redelivery.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Union

from nanobot.logging import get_logger, log_error


def _freeze(obj, media, metadata) -> None:
    object.__setattr__(obj, "media", tuple(media or ()))
    object.__setattr__(obj, "metadata", MappingProxyType(dict(metadata or {})))


@dataclass(frozen=True)
class InboundMessage:
    """A message received from a chat channel (or from a subagent on ``system``).

    Fields:
        channel: Source channel: ``cli``, ``feishu``, ``system``...
        sender_id: Sender user id.
        chat_id: Chat/conversation id within the channel.
        content: Message text.
        media: Local paths or URLs of attached media.
        metadata: Channel-specific extras (read-only).
    """
    channel: str
    sender_id: str
    chat_id: str
    content: str
    media: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _freeze(self, self.media, self.metadata)

    @property
    def session_key(self) -> str:
        return f"{self.channel}:{self.chat_id}"


@dataclass(frozen=True)
class OutboundMessage:
    """A message to be delivered on a chat channel."""
    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    media: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _freeze(self, self.media, self.metadata)


OutboundHandler = Callable[[OutboundMessage], Union[None, Awaitable[None]]]


class MessageBus:
    """Two unbounded FIFO queues plus per-channel outbound subscribers."""

    # Seconds dispatch_outbound() waits before re-checking the running flag.
    DISPATCH_POLL_SECONDS = 1.0

    def __init__(self, *, logger: logging.Logger | None = None):
        self.logger = logger or get_logger("bus")
        self._inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self._outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self._subscribers: dict[str, list[OutboundHandler]] = {}
        self._running = False

    # ---- Inbound ----

    def publish_inbound(self, msg: InboundMessage) -> None:
        self._inbound.put_nowait(msg)
        self.logger.debug(f"Inbound from {msg.session_key} ({len(msg.content)} chars)")

    async def consume_inbound(self) -> InboundMessage:
        return await self._inbound.get()

    # ---- Outbound ----

    def publish_outbound(self, msg: OutboundMessage) -> None:
        self._outbound.put_nowait(msg)
        self.logger.debug(f"Outbound to {msg.channel}:{msg.chat_id} ({len(msg.content)} chars)")

    async def consume_outbound(self) -> OutboundMessage:
        return await self._outbound.get()

    def subscribe_outbound(self, channel: str, handler: OutboundHandler) -> None:
        """Add *handler* (sync or async) for messages addressed to *channel*."""
        self._subscribers.setdefault(channel, []).append(handler)

    async def _deliver(self, msg: OutboundMessage) -> None:
        for handler in list(self._subscribers.get(msg.channel, ())):
            try:
                result = handler(msg)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log_error(
                    self.logger,
                    f"Error dispatching to {msg.channel}",
                    exc=e,
                    context={"chat_id": msg.chat_id, "handler": getattr(handler, "__qualname__", repr(handler))},
                )

    async def dispatch_outbound(self) -> None:
        """Deliver outbound messages to subscribers until ``stop()`` is called."""
        self._running = True
        self.logger.debug("Outbound dispatcher started")
        while self._running:
            try:
                msg = await asyncio.wait_for(self._outbound.get(), timeout=self.DISPATCH_POLL_SECONDS)
            except asyncio.TimeoutError:
                continue
            await self._deliver(msg)
        self.logger.debug("Outbound dispatcher stopped")

    def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def inbound_size(self) -> int:
        return self._inbound.qsize()

    @property
    def outbound_size(self) -> int:
        return self._outbound.qsize()
