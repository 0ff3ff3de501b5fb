"""LLM abstraction layer - provider-agnostic interface for LLM interactions.

Re-exports the public API so consumers can write:
    from nanobot.llm import LLMAdapter, OpenAIAdapter, LLMResponse, Message, ...
"""

from .base import (
    Conversation,
    ImagePart,
    LLMAdapter,
    LLMResponse,
    Message,
    TextPart,
    ToolCallRequest,
    ToolDefinition,
)
from .openai_adapter import OpenAIAdapter
from .anthropic_adapter import AnthropicAdapter
from .factory import create_adapter, resolve_backend
