"""nanobot agent core: tool loop, LLM adapters, message bus and subagents.

Lazy imports keep ``import nanobot`` cheap and avoid loading .env/config
until something actually needs it.
"""

__version__ = "0.1.0"


def __getattr__(name: str):
    if name == "AgentLoop":
        from .core import AgentLoop
        return AgentLoop
    if name == "SubagentManager":
        from .sub_agent import SubagentManager
        return SubagentManager
    if name in ("MessageBus", "InboundMessage", "OutboundMessage"):
        from . import message_bus
        return getattr(message_bus, name)
    if name in ("Tool", "FunctionTool", "ToolRegistry"):
        from . import tools
        return getattr(tools, name)
    if name == "create_adapter":
        from .llm import create_adapter
        return create_adapter
    raise AttributeError(f"module 'nanobot' has no attribute {name!r}")
