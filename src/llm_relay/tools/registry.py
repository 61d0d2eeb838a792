"""Tool registry with plugin discovery.

A registry is an ordinary object handed to whoever needs it; there is no
process-wide instance.
"""

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Iterable

from llm_relay.tools.base import Tool
from llm_relay.types import ToolCall, ToolExecutionResult, ToolSpec

_logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "llm_relay.tools"


def _smart_truncate(text: str, max_length: int) -> str:
    """Keep the head and tail of *text*, dropping the middle."""
    if len(text) <= max_length:
        return text
    head_size = max_length // 4
    tail_size = max_length - head_size
    omitted = len(text) - max_length
    return (
        text[:head_size]
        + f"\n\n... [{omitted} chars truncated] ...\n\n"
        + text[-tail_size:]
    )


class ToolRegistry:
    """Registry of available tools with async execution and plugin discovery."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool instance."""
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def display_name(self, name: str) -> str:
        tool = self._tools.get(name)
        return tool.label if tool is not None else name

    def specs(self, names: Iterable[str] | None = None) -> list[ToolSpec]:
        """Return specs for *names* (all tools when *None*).

        Unknown names are skipped with a warning.
        """
        if names is None:
            return [t.to_spec() for t in self._tools.values()]
        result: list[ToolSpec] = []
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                _logger.warning("Enabled tool %s is not registered", name)
                continue
            result.append(tool.to_spec())
        return result

    async def execute(self, call: ToolCall) -> ToolExecutionResult:
        """Run the tool named by *call*.

        Applies per-tool output truncation after execution.
        Returns an error result if the tool is unknown or raises.
        """
        tool = self._tools.get(call.tool_id)
        if tool is None:
            return ToolExecutionResult.failure(
                f"Unknown tool: {call.tool_id}. Available: {', '.join(self._tools.keys())}"
            )
        try:
            result = await tool.execute(**call.parameters)
        except Exception as e:
            _logger.exception("Tool %s raised", call.tool_id)
            return ToolExecutionResult.failure(
                f"Tool '{call.tool_id}' execution failed: {type(e).__name__}: {e}"
            )
        max_out = tool.max_output
        if result.success and max_out > 0 and len(result.output) > max_out:
            result = ToolExecutionResult.ok(_smart_truncate(result.output, max_out), result.details)
        return result

    def discover(self) -> None:
        """Load tools from the ``llm_relay.tools`` entry-point group.

        Each entry point should be a Tool instance, a Tool subclass (which
        will be instantiated) or a callable returning a Tool.
        """
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
                if isinstance(obj, type) and issubclass(obj, Tool):
                    tool = obj()
                elif isinstance(obj, Tool):
                    tool = obj
                elif callable(obj):
                    tool = obj()
                else:
                    _logger.warning(
                        "Entry point %s did not return a Tool: %s", ep.name, type(obj)
                    )
                    continue
                self.register(tool)
                _logger.info("Discovered plugin tool: %s", tool.name)
            except Exception:
                _logger.exception("Failed to load tool plugin: %s", ep.name)
