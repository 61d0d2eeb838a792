"""Async Tool abstract base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from llm_relay.types import ToolExecutionResult, ToolParameter, ToolSpec


class Tool(ABC):
    """Base class for all tools.

    Subclasses must set ``name``, ``description``, ``parameters`` as class
    attributes and implement the async ``execute()`` method.  The
    orchestrator only ever sees the :class:`ToolSpec` and the result.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    display_name: str = ""
    max_output: int = 5000  # Per-tool output limit (chars). Override in subclasses.

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolExecutionResult:
        """Execute the tool asynchronously."""

    @property
    def label(self) -> str:
        return self.display_name or self.name

    def json_schema(self) -> dict[str, Any]:
        """JSON-schema object describing the parameters."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {
                "type": p.type,
                "description": p.description,
            }
            if p.enum:
                prop["enum"] = p.enum
            if p.default is not None:
                prop["default"] = p.default
            properties[p.name] = prop
            if p.required:
                required.append(p.name)
        return {"type": "object", "properties": properties, "required": required}

    def to_spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, parameters=self.json_schema())
