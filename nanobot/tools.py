"""
Tool capabilities and the registry that dispatches them.

A tool is anything with a name, a description, a JSON-schema ``parameters``
dict and an async ``execute(arguments) -> str``. Concrete tools (file I/O,
shell, web...) live outside this package and are handed to the agent loop;
the only tools the core implements itself are in ``nanobot.tool_handlers``.

``ToolRegistry.execute`` never raises: an unknown name or a failing tool
becomes a textual result the model sees on its next turn.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any

from nanobot.llm.base import ToolDefinition
from nanobot.logging import get_logger, log_error, tagged


class ToolTimer:
    """Context manager for timing tool execution."""

    def __init__(self):
        self._start = 0.0
        self.elapsed_ms = 0

    def __enter__(self):
        self._start = time.monotonic()
        return self

    def __exit__(self, *exc):
        self.elapsed_ms = int((time.monotonic() - self._start) * 1000)
        return False


class Tool(ABC):
    """Base class for a named callable capability."""

    name: str = ""
    description: str = ""
    parameters: dict | None = None

    @abstractmethod
    async def execute(self, arguments: dict) -> Any:
        """Run the tool. Non-string results are JSON-encoded by the registry."""

    def to_definition(self) -> ToolDefinition:
        parameters = self.parameters or {"type": "object", "properties": {}}
        return ToolDefinition(name=self.name, description=self.description, parameters=parameters)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class FunctionTool(Tool):
    """Wrap a plain (sync or async) callable taking keyword arguments as a Tool.

    Example::

        async def echo(text: str) -> str:
            return text

        registry.register(FunctionTool("echo", "Echo text back", schema, echo))
    """

    def __init__(self, name: str, description: str, parameters: dict | None, fn: Callable[..., Any]):
        self.name = name
        self.description = description
        self.parameters = parameters or {"type": "object", "properties": {}}
        self._fn = fn

    async def execute(self, arguments: dict) -> Any:
        result = self._fn(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str, ensure_ascii=False)


class ToolRegistry:
    """Name -> Tool map. Re-registering a name replaces the prior binding."""

    def __init__(self, tools: Iterable[Tool] = (), *, logger: logging.Logger | None = None):
        self._tools: dict[str, Tool] = {}
        self.logger = logger or get_logger("tools")
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            self.logger.debug(f"Replacing tool binding: {tool.name}")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        """Definitions of every registered tool, in registration order."""
        return [tool.to_definition() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: dict | None = None) -> str:
        """Execute tool *name* and return its result as text.

        Unknown tools and tool failures are reported in the returned string;
        this method does not raise.
        """
        tool = self._tools.get(name)
        if tool is None:
            self.logger.warning(f"Tool not found: {name}", extra=tagged("tool_error"))
            return f"Error: Tool '{name}' not found"

        args = arguments or {}
        self.logger.debug(f"Tool: {name}({args})", extra=tagged("tool_call"))
        timer = ToolTimer()
        try:
            with timer:
                result = await tool.execute(args)
        except Exception as e:
            log_error(self.logger, f"Tool {name} failed", exc=e, context={"tool_args": args})
            return f"Error executing {name}: {e}"

        self.logger.debug(f"{name} -> ok ({timer.elapsed_ms} ms)", extra=tagged("tool_result"))
        return _stringify(result)
