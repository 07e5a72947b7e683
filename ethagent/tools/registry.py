"""
Tool Registry: the catalog of tools a capability profile can be given.

Every tool is registered with its JSON Schema definition, description, handler
and category. The registry serves two purposes:

1. DISCOVERY: building the ``tools`` array sent with a Claude request, filtered
   by category so each profile only sees its own tool subset.

2. DISPATCH: mapping a tool_use block back to the handler that executes it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ToolDefinition:
    """
    A registered tool with its schema, description, and handler.

    The JSON schema is exactly what gets sent to the Claude API in the
    ``tools`` array. The handler is awaited (or called) with the tool input
    as keyword arguments.
    """
    name: str
    description: str
    input_schema: dict[str, Any]          # JSON Schema for tool parameters
    handler: Optional[Callable] = None
    category: str = "general"             # Profiles select tools by category
    enabled: bool = True
    timeout: Optional[float] = None       # Per-tool timeout in seconds (None = executor default)

    def to_api_format(self) -> dict[str, Any]:
        """Shape expected by the Messages API ``tools`` array."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """Central registry for the tools exposed to capability profiles."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        logger.debug("tool_registry.initialized")

    def register(self, tool: ToolDefinition, *, allow_override: bool = False) -> None:
        """Register a tool, blocking accidental name collisions by default."""
        existing = self._tools.get(tool.name)
        if existing is not None and not allow_override:
            logger.warning(
                "tool_registry.name_collision",
                name=tool.name,
                existing_category=existing.category,
                new_category=tool.category,
            )
            raise ValueError(
                f"Tool '{tool.name}' is already registered. "
                "Use allow_override=True for an explicit replacement."
            )

        self._tools[tool.name] = tool
        logger.debug("tool_registry.registered", name=tool.name, category=tool.category)

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            logger.debug("tool_registry.unregistered", name=name)
            return True
        return False

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def definitions(self, categories: Optional[Iterable[str]] = None) -> list[ToolDefinition]:
        """Enabled tool definitions, optionally restricted to some categories."""
        wanted = set(categories) if categories is not None else None
        return [
            tool
            for tool in self._tools.values()
            if tool.enabled and (wanted is None or tool.category in wanted)
        ]

    def get_api_tools(self, categories: Optional[Iterable[str]] = None) -> list[dict[str, Any]]:
        """Generate the tools array for a Claude API call."""
        return [tool.to_api_format() for tool in self.definitions(categories)]

    def subset(self, categories: Iterable[str]) -> "ToolRegistry":
        """A new registry holding only the tools of the given categories."""
        narrowed = ToolRegistry()
        for tool in self.definitions(categories):
            narrowed.register(tool)
        return narrowed

    def list_tools(self) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "category": tool.category, "enabled": tool.enabled}
            for tool in self._tools.values()
        ]

    @property
    def count(self) -> int:
        return len(self._tools)
