"""OpenAI adapter - wraps the ``openai`` SDK for OpenAI and compatible APIs.

Covers OpenAI itself and any provider exposing an OpenAI-compatible
``/chat/completions`` endpoint (set ``providers.openai.api_base``).

Wire shape: a flat message array. Assistant tool calls travel inline as
``tool_calls[].function.{name, arguments}`` (arguments JSON-encoded) and
each result is a separate ``role="tool"`` message carrying ``tool_call_id``.

This is the **only** module that imports the ``openai`` package.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import openai

from .base import (
    FINISH_CONTENT_FILTER,
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


_FINISH_REASONS = {
    "stop": FINISH_STOP,
    "length": FINISH_LENGTH,
    "tool_calls": FINISH_TOOL_CALLS,
    "function_call": FINISH_TOOL_CALLS,
    "content_filter": FINISH_CONTENT_FILTER,
}


# ---------------------------------------------------------------------------
# Codec helpers
# ---------------------------------------------------------------------------


def build_openai_tools(definitions: Sequence[ToolDefinition] | None) -> list[dict] | None:
    """Convert ToolDefinition list to OpenAI tool format."""
    if not definitions:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": d.name,
                "description": d.description,
                "parameters": d.parameters,
            },
        }
        for d in definitions
    ]


def _encode_content(msg: Message) -> str | list[dict]:
    if isinstance(msg.content, str):
        return msg.content
    parts: list[dict] = []
    for part in msg.content:
        if isinstance(part, ImagePart):
            parts.append({"type": "image_url", "image_url": {"url": part.url}})
        else:
            parts.append({"type": "text", "text": part.text})
    return parts


def to_openai_messages(messages: Sequence[Message]) -> list[dict]:
    """Encode canonical messages as an OpenAI ``messages`` array."""
    wire: list[dict] = []
    for msg in messages:
        if msg.role == "tool":
            wire.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.text,
            })
        elif msg.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": msg.text or None}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments, ensure_ascii=False),
                        },
                    }
                    for tc in msg.tool_calls
                ]
            elif entry["content"] is None:
                entry["content"] = ""
            wire.append(entry)
        else:
            wire.append({"role": msg.role, "content": _encode_content(msg)})
    return wire


def _decode_content(content: Any) -> str | tuple:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        kind = block.get("type")
        if kind == "image_url":
            parts.append(ImagePart(url=ensure_dict(block.get("image_url")).get("url", "")))
        elif kind == "text":
            parts.append(TextPart(text=block.get("text", "")))
    return tuple(parts)


def _parse_arguments(raw: Any) -> dict:
    """Decode a tool-call argument payload; malformed input yields ``{}``."""
    if isinstance(raw, dict):
        return raw
    if not raw or not isinstance(raw, str):
        return {}
    try:
        return ensure_dict(json.loads(raw))
    except (json.JSONDecodeError, TypeError):
        return {}


def _parse_tool_calls(raw_tool_calls: list[dict] | None) -> list[ToolCallRequest]:
    """Parse OpenAI tool calls into ToolCallRequest objects."""
    result = []
    for tc in raw_tool_calls or []:
        function = ensure_dict(tc.get("function"))
        result.append(
            ToolCallRequest(
                id=tc.get("id") or new_tool_call_id(),
                name=function.get("name") or "",
                arguments=_parse_arguments(function.get("arguments")),
            )
        )
    return result


def from_openai_messages(wire: Sequence[dict]) -> list[Message]:
    """Decode an OpenAI ``messages`` array back into canonical messages.

    The wire format does not carry a tool name on ``role="tool"`` messages,
    so it is recovered from the assistant call that emitted the id.
    """
    names_by_id: dict[str, str] = {}
    messages: list[Message] = []
    for entry in wire:
        role = entry.get("role")
        if role == "tool":
            call_id = entry.get("tool_call_id")
            content = _decode_content(entry.get("content"))
            if not isinstance(content, str):
                content = "".join(p.text for p in content if isinstance(p, TextPart))
            messages.append(
                Message.tool_result(call_id, entry.get("name") or names_by_id.get(call_id, ""), content)
            )
        elif role == "assistant":
            calls = _parse_tool_calls(entry.get("tool_calls"))
            for tc in calls:
                names_by_id[tc.id] = tc.name
            messages.append(Message.assistant(entry.get("content") or "", calls))
        else:
            messages.append(Message(role=role, content=_decode_content(entry.get("content"))))
    return messages


def _finish_reason(native: str | None, has_tool_calls: bool) -> str:
    if not native:
        return FINISH_TOOL_CALLS if has_tool_calls else FINISH_STOP
    return _FINISH_REASONS.get(native, native)


def _reasoning_text(message: dict) -> str | None:
    reasoning = message.get("reasoning_content")
    if reasoning:
        return reasoning
    details = message.get("reasoning_details") or []
    texts = [d.get("text") for d in details if isinstance(d, dict) and d.get("text")]
    return "\n".join(texts) if texts else None


def _parse_usage(raw_usage: dict | None) -> dict[str, int]:
    if not raw_usage:
        return {}
    usage = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        if raw_usage.get(key) is not None:
            usage[key] = int(raw_usage[key])
    return usage


def parse_openai_response(payload: dict) -> LLMResponse:
    """Parse a ChatCompletion payload (``model_dump()`` dict) into an LLMResponse."""
    choices = payload.get("choices") or []
    usage = _parse_usage(payload.get("usage"))
    if not choices:
        return LLMResponse(usage=usage)

    choice = choices[0]
    message = ensure_dict(choice.get("message"))

    tool_calls = _parse_tool_calls(message.get("tool_calls"))
    legacy = message.get("function_call")
    if not tool_calls and legacy:
        tool_calls = _parse_tool_calls([{"function": legacy}])

    content = message.get("content") or None
    reasoning = _reasoning_text(message)
    if reasoning:
        content = format_reasoning(reasoning, content)

    return LLMResponse(
        content=content,
        tool_calls=tool_calls,
        finish_reason=_finish_reason(choice.get("finish_reason"), bool(tool_calls)),
        usage=usage,
    )


# ---------------------------------------------------------------------------
# OpenAIAdapter
# ---------------------------------------------------------------------------


class OpenAIAdapter(LLMAdapter):
    """Adapter that wraps the async ``openai`` SDK for OpenAI and compatible APIs."""

    backend = "openai"
    display_name = "OpenAI"
    default_model = "gpt-4o-mini"

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
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": to_openai_messages(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        openai_tools = build_openai_tools(tools)
        if openai_tools:
            kwargs["tools"] = openai_tools
            kwargs["tool_choice"] = "auto"

        self.logger.debug("OpenAI request: model=%s messages=%d tools=%d",
                          model, len(messages), len(tools))
        raw = await self.client.chat.completions.create(**kwargs)
        payload = raw if isinstance(raw, dict) else raw.model_dump()
        response = parse_openai_response(payload)
        self.logger.debug("OpenAI response: finish=%s tool_calls=%d usage=%s",
                          response.finish_reason, len(response.tool_calls), response.usage)
        return response

    # -- Convenience properties ------------------------------------------------

    @property
    def client(self):
        """Escape hatch - the underlying ``openai.AsyncOpenAI`` client (built on first use)."""
        if self._client is None:
            kwargs: dict[str, Any] = {
                "api_key": self.api_key,
                "timeout": self.timeout_ms / 1000.0,  # openai SDK uses seconds
            }
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = openai.AsyncOpenAI(**kwargs)
        return self._client
