"""Tools reachable by the model through the tool-calling loop."""

from llm_relay.tools.base import Tool
from llm_relay.tools.datetime_tool import DateTimeTool
from llm_relay.tools.registry import ToolRegistry


def register_builtins(registry: ToolRegistry) -> None:
    """Register all built-in tools with the given registry."""
    registry.register(DateTimeTool())


__all__ = ["DateTimeTool", "Tool", "ToolRegistry", "register_builtins"]
