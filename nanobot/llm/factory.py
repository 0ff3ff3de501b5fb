"""Backend selection: pick the adapter for a model name once, at construction."""

from __future__ import annotations

import logging

from nanobot import config

from .anthropic_adapter import AnthropicAdapter
from .base import LLMAdapter
from .openai_adapter import OpenAIAdapter


def resolve_backend(model: str) -> str:
    """Return ``"anthropic"`` for ``anthropic/...`` or ``claude-...`` models, else ``"openai"``."""
    lower = model.lower()
    if lower.startswith("anthropic/") or lower.startswith("claude-"):
        return "anthropic"
    return "openai"


def create_adapter(
    model: str | None = None,
    api_key: str | None = None,
    api_base: str | None = None,
    *,
    logger: logging.Logger | None = None,
) -> LLMAdapter:
    """Create the LLM adapter for *model* (default: ``agents.defaults.model``).

    Credentials fall back to ``providers.<backend>.api_key``/``api_base`` in
    config.json and then the backend's env var.
    """
    model = model or config.DEFAULT_MODEL
    backend = resolve_backend(model)
    api_key = api_key or config.get_api_key(backend)
    api_base = api_base or config.get_api_base(backend)
    if backend == "anthropic":
        return AnthropicAdapter(api_key=api_key, base_url=api_base, default_model=model, logger=logger)
    return OpenAIAdapter(api_key=api_key, base_url=api_base, default_model=model, logger=logger)
