"""Anthropic adapter - wraps the ``anthropic`` SDK for Claude models.

This is the **only** module that imports the ``anthropic`` package.

Key Anthropic API differences from OpenAI:
- System prompt is a separate ``system`` parameter, not a message.
- Strict user/assistant alternation required - consecutive same-role messages
  must be merged.
- Tool calls are ``tool_use`` blocks inside the assistant message; tool
  results are sent inside a ``user`` message as ``tool_result`` blocks.
- Extended thinking comes back as ``thinking`` (or ``redacted_thinking``)
  content blocks.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import anthropic

from .base import (
    FINISH_LENGTH,
    FINISH_STOP,
    FINISH_TOOL_CALLS,
    ImagePart,
    LLMAdapter,
    LLMResponse,
    Message,
    TextPart,
    ToolCallRequest,
    ToolDefinition,
    ensure_dict,
    format_reasoning,
    new_tool_call_id,
)


_STOP_REASONS = {
    "end_turn": FINISH_STOP,
    "stop_sequence": FINISH_STOP,
    "max_tokens": FINISH_LENGTH,
    "tool_use": FINISH_TOOL_CALLS,
}

_REDACTED = "<redacted>"


# ---------------------------------------------------------------------------
# Codec helpers
# ---------------------------------------------------------------------------


def build_anthropic_tools(definitions: Sequence[ToolDefinition] | None) -> list[dict] | None:
    """Convert ToolDefinition list to Anthropic tool format."""
    if not definitions:
        return None
    return [
        {
            "name": d.name,
            "description": d.description,
            "input_schema": d.parameters,
        }
        for d in definitions
    ]


def _image_block(part: ImagePart) -> dict:
    if part.is_data_url:
        media_type, data = part.split_data_url()
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": media_type, "data": data},
        }
    return {"type": "image", "source": {"type": "url", "url": part.url}}


def _encode_user_content(msg: Message) -> str | list[dict]:
    if isinstance(msg.content, str):
        return msg.content
    blocks = []
    for part in msg.content:
        if isinstance(part, ImagePart):
            blocks.append(_image_block(part))
        else:
            blocks.append({"type": "text", "text": part.text})
    return blocks


def _ensure_alternation(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages to satisfy Anthropic's alternation rule."""
    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev["content"] = _as_blocks(prev["content"]) + _as_blocks(msg["content"])
        else:
            merged.append(dict(msg))
    return merged


def _as_blocks(content: str | list[dict]) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content)


def to_anthropic_messages(messages: Sequence[Message]) -> tuple[str | None, list[dict]]:
    """Encode canonical messages as ``(system, messages)`` for the Messages API.

    System messages are lifted into the separate ``system`` parameter. An
    assistant message with neither text nor tool calls has no valid block
    form and is left off the wire.
    """
    system_parts: list[str] = []
    wire: list[dict] = []
    for msg in messages:
        if msg.role == "system":
            if msg.text:
                system_parts.append(msg.text)
        elif msg.role == "tool":
            wire.append({
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.text,
                }],
            })
        elif msg.role == "assistant":
            blocks: list[dict] = []
            if msg.text:
                blocks.append({"type": "text", "text": msg.text})
            for tc in msg.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": tc.id,
                    "name": tc.name,
                    "input": tc.arguments,
                })
            if blocks:
                wire.append({"role": "assistant", "content": blocks})
        else:
            wire.append({"role": "user", "content": _encode_user_content(msg)})
    system = "\n\n".join(system_parts) if system_parts else None
    return system, _ensure_alternation(wire)


def _block_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(b.get("text", "") for b in content if b.get("type") == "text")


def _decode_part(block: dict):
    if block.get("type") == "image":
        source = ensure_dict(block.get("source"))
        if source.get("type") == "base64":
            return ImagePart(url=f"data:{source.get('media_type', 'image/png')};base64,{source.get('data', '')}")
        return ImagePart(url=source.get("url", ""))
    return TextPart(text=block.get("text", ""))


def _user_message(parts: list) -> Message:
    if all(isinstance(p, TextPart) for p in parts) and len(parts) == 1:
        return Message.user(parts[0].text)
    return Message.user(tuple(parts))


def from_anthropic_messages(system: str | None, wire: Sequence[dict]) -> list[Message]:
    """Decode ``(system, messages)`` back into canonical messages.

    ``tool_result`` blocks are split back out into tool messages; their tool
    name is recovered from the ``tool_use`` block that emitted the id.
    """
    messages: list[Message] = []
    if system:
        messages.append(Message.system(system))
    names_by_id: dict[str, str] = {}

    for entry in wire:
        content = entry.get("content")
        if entry.get("role") == "assistant":
            texts: list[str] = []
            calls: list[ToolCallRequest] = []
            for block in _as_blocks(content):
                if block.get("type") == "text":
                    texts.append(block.get("text", ""))
                elif block.get("type") == "tool_use":
                    tc = ToolCallRequest(
                        id=block.get("id") or new_tool_call_id(),
                        name=block.get("name", ""),
                        arguments=ensure_dict(block.get("input")),
                    )
                    names_by_id[tc.id] = tc.name
                    calls.append(tc)
            messages.append(Message.assistant("".join(texts), calls))
            continue

        if isinstance(content, str):
            messages.append(Message.user(content))
            continue
        pending: list = []
        for block in content or []:
            if block.get("type") == "tool_result":
                if pending:
                    messages.append(_user_message(pending))
                    pending = []
                call_id = block.get("tool_use_id")
                messages.append(
                    Message.tool_result(call_id, names_by_id.get(call_id, ""), _block_text(block.get("content")))
                )
            else:
                pending.append(_decode_part(block))
        if pending:
            messages.append(_user_message(pending))
    return messages


def _stop_reason(native: str | None, has_tool_calls: bool) -> str:
    if not native:
        return FINISH_TOOL_CALLS if has_tool_calls else FINISH_STOP
    return _STOP_REASONS.get(native, native)


def parse_anthropic_response(payload: dict) -> LLMResponse:
    """Parse a Messages API payload (``model_dump()`` dict) into an LLMResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCallRequest] = []
    thoughts: list[str] = []

    for block in payload.get("content") or []:
        kind = block.get("type")
        if kind == "text":
            text_parts.append(block.get("text", ""))
        elif kind == "tool_use":
            tool_calls.append(
                ToolCallRequest(
                    id=block.get("id") or new_tool_call_id(),
                    name=block.get("name", ""),
                    arguments=ensure_dict(block.get("input")),
                )
            )
        elif kind == "thinking":
            if block.get("thinking"):
                thoughts.append(block["thinking"])
        elif kind == "redacted_thinking":
            thoughts.append(_REDACTED)

    content = "\n".join(text_parts) if text_parts else None
    if thoughts:
        content = format_reasoning("\n".join(thoughts), content)

    usage: dict[str, int] = {}
    raw_usage = payload.get("usage")
    if raw_usage:
        prompt = int(raw_usage.get("input_tokens") or 0)
        completion = int(raw_usage.get("output_tokens") or 0)
        usage = {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": prompt + completion,
        }

    return LLMResponse(
        content=content,
        tool_calls=tool_calls,
        finish_reason=_stop_reason(payload.get("stop_reason"), bool(tool_calls)),
        usage=usage,
    )


# ---------------------------------------------------------------------------
# AnthropicAdapter
# ---------------------------------------------------------------------------


class AnthropicAdapter(LLMAdapter):
    """Adapter that wraps the async ``anthropic`` SDK for Claude models."""

    backend = "anthropic"
    display_name = "Anthropic"
    default_model = "claude-sonnet-4-20250514"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        timeout_ms: int = 300_000,
        default_model: str | None = None,
        client: Any = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(default_model=default_model, logger=logger)
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_ms = timeout_ms
        self._client = client

    async def _complete(
        self,
        messages: tuple[Message, ...],
        tools: list[ToolDefinition],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        system, wire = to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": wire,
        }
        if system:
            kwargs["system"] = system
        anthropic_tools = build_anthropic_tools(tools)
        if anthropic_tools:
            kwargs["tools"] = anthropic_tools

        self.logger.debug("Anthropic request: model=%s messages=%d tools=%d",
                          model, len(wire), len(tools))
        raw = await self.client.messages.create(**kwargs)
        payload = raw if isinstance(raw, dict) else raw.model_dump()
        response = parse_anthropic_response(payload)
        self.logger.debug("Anthropic response: finish=%s tool_calls=%d usage=%s",
                          response.finish_reason, len(response.tool_calls), response.usage)
        return response

    # -- Convenience properties ------------------------------------------------

    @property
    def client(self):
        """Escape hatch - the underlying ``anthropic.AsyncAnthropic`` client (built on first use)."""
        if self._client is None:
            kwargs: dict[str, Any] = {
                "api_key": self.api_key,
                "timeout": self.timeout_ms / 1000.0,
            }
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client
