"""Provider-agnostic types and abstract base class for LLM adapters.

All agent code should depend on these types, never on provider-specific SDKs.
Adapters translate a canonical ``Conversation`` into their backend's wire
format, perform the call and decode the reply back into an ``LLMResponse``.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from nanobot.logging import get_logger, log_error


ROLES = ("system", "user", "assistant", "tool")

# Finish reasons every adapter maps its native codes onto. Unknown native
# codes are passed through verbatim.
FINISH_STOP = "stop"
FINISH_LENGTH = "length"
FINISH_TOOL_CALLS = "tool_calls"
FINISH_CONTENT_FILTER = "content_filter"
FINISH_ERROR = "error"


def new_tool_call_id() -> str:
    """Generate a correlation id for a tool call the backend left unnamed."""
    return f"call_{uuid.uuid4().hex[:24]}"


def format_reasoning(reasoning: str, content: str | None) -> str:
    """Prepend a vendor reasoning segment to the answer text."""
    marker = f"[Thinking: {reasoning}]"
    if content:
        return f"{marker}\n\n{content}"
    return marker


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    """An image reference: an ``http(s)`` URL or a ``data:<mime>;base64,...`` URL."""
    url: str

    @property
    def is_data_url(self) -> bool:
        return self.url.startswith("data:")

    def split_data_url(self) -> tuple[str, str]:
        """Return ``(media_type, base64_payload)`` for a data URL."""
        header, _, payload = self.url.partition(",")
        media_type = header[len("data:"):].split(";")[0] or "image/png"
        return media_type, payload


ContentPart = Union[TextPart, ImagePart]
Content = Union[str, tuple[ContentPart, ...]]


@dataclass(frozen=True)
class ToolCallRequest:
    """A single tool invocation requested by the model.

    Attributes:
        id: Correlation token linking the request to its tool-result message.
        name: Tool name.
        arguments: Parsed argument dict.
    """
    id: str
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ToolDefinition:
    """The structural contract a backend uses for function calling."""
    name: str
    description: str
    parameters: dict


@dataclass(frozen=True)
class Message:
    """One canonical conversation message.

    ``content`` is either plain text or a tuple of ``TextPart``/``ImagePart``.
    ``tool_call_id``/``tool_name`` are only valid on tool messages and
    ``tool_calls`` only on assistant messages.
    """
    role: str
    content: Content = ""
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    tool_name: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))
        if isinstance(self.tool_calls, list):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if self.content is None:
            object.__setattr__(self, "content", "")
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("Tool message requires a tool_call_id")
        if self.role != "tool" and (self.tool_call_id or self.tool_name):
            raise ValueError(f"tool_call_id/tool_name are only valid on tool messages, not {self.role!r}")
        if self.tool_calls and self.role != "assistant":
            raise ValueError(f"Only assistant messages may carry tool calls, not {self.role!r}")

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: Content) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str | None = "", tool_calls: Iterable[ToolCallRequest] = ()) -> "Message":
        return cls(role="assistant", content=content or "", tool_calls=tuple(tool_calls))

    @classmethod
    def tool_result(cls, tool_call_id: str, tool_name: str, content: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=tool_call_id, tool_name=tool_name)

    @property
    def text(self) -> str:
        """Plain text of the message (text parts joined, images skipped)."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def images(self) -> list[ImagePart]:
        if isinstance(self.content, str):
            return []
        return [p for p in self.content if isinstance(p, ImagePart)]


class Conversation:
    """Append-only ordered sequence of messages.

    Appending a tool message whose ``tool_call_id`` was never emitted by an
    earlier assistant message raises ``ValueError``.
    """

    def __init__(self, messages: Iterable[Message] = ()):
        self._messages: list[Message] = []
        self._emitted_ids: set[str] = set()
        self._answered_ids: set[str] = set()
        self.extend(messages)

    def append(self, message: Message) -> None:
        if message.role == "tool":
            if message.tool_call_id not in self._emitted_ids:
                raise ValueError(
                    f"Tool result references unknown tool_call_id {message.tool_call_id!r}"
                )
            self._answered_ids.add(message.tool_call_id)
        for tc in message.tool_calls:
            self._emitted_ids.add(tc.id)
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(message)

    def pending_tool_call_ids(self) -> list[str]:
        """Ids emitted by assistant messages that still lack a tool result."""
        pending = []
        for msg in self._messages:
            for tc in msg.tool_calls:
                if tc.id not in self._answered_ids:
                    pending.append(tc.id)
        return pending

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index):
        return self._messages[index]

    def __repr__(self) -> str:
        return f"Conversation({len(self._messages)} messages)"


@dataclass
class LLMResponse:
    """Provider-agnostic response from an LLM call.

    Attributes:
        content: Answer text (reasoning segment prepended when present), or
            None when the model only requested tools.
        tool_calls: Requested tool invocations, in the order returned.
        finish_reason: ``stop``, ``length``, ``tool_calls``,
            ``content_filter``, ``error`` or an unknown native code.
        usage: ``prompt_tokens``/``completion_tokens``/``total_tokens``;
            empty when the backend reported nothing.
    """
    content: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = FINISH_STOP
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    @property
    def is_error(self) -> bool:
        return self.finish_reason == FINISH_ERROR


# ---------------------------------------------------------------------------
# LLMAdapter ABC
# ---------------------------------------------------------------------------

class LLMAdapter(ABC):
    """Abstract interface that every LLM provider adapter must implement.

    ``chat()`` is the only entry point agent code uses. It validates input,
    resolves the model and delegates to ``_complete()``; any exception the
    backend raises is logged and converted into an ``error`` response.
    """

    backend: str = ""
    display_name: str = ""
    default_model: str = ""

    def __init__(self, *, default_model: str | None = None, logger: logging.Logger | None = None):
        if default_model:
            self.default_model = default_model
        self.logger = logger or get_logger(f"llm.{self.backend}")

    def get_default_model(self) -> str:
        return self.default_model

    async def chat(
        self,
        messages: Sequence[Message] | Conversation,
        tools: Sequence[ToolDefinition] | None = None,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Send the conversation and return the model's reply.

        Raises:
            ValueError: If ``messages`` is empty.
        """
        history = tuple(messages)
        if not history:
            raise ValueError("chat() requires at least one message")
        resolved = self.strip_routing_prefix(model or self.default_model)
        try:
            return await self._complete(
                history,
                list(tools or ()),
                model=resolved,
                max_tokens=max_tokens if max_tokens is not None else 4096,
                temperature=temperature if temperature is not None else 0.7,
            )
        except Exception as e:
            log_error(
                self.logger,
                f"{self.display_name} call failed",
                exc=e,
                context={"model": resolved, "messages": len(history)},
            )
            return LLMResponse(
                content=f"Error calling {self.display_name}: {e}",
                finish_reason=FINISH_ERROR,
            )

    def strip_routing_prefix(self, model: str) -> str:
        prefix = f"{self.backend}/"
        if model.lower().startswith(prefix):
            return model[len(prefix):]
        return model

    @abstractmethod
    async def _complete(
        self,
        messages: tuple[Message, ...],
        tools: list[ToolDefinition],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        """Perform one backend call. May raise; ``chat()`` contains failures."""


def ensure_dict(value: Any) -> dict:
    """Return *value* if it is a dict, else an empty dict."""
    return value if isinstance(value, dict) else {}
