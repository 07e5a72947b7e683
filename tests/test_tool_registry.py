from __future__ import annotations

import pytest

from ethagent.tools.registry import ToolDefinition, ToolRegistry


def _tool(name: str, category: str, enabled: bool = True) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=f"{name} tool",
        input_schema={"type": "object", "properties": {}},
        handler=lambda: name,
        category=category,
        enabled=enabled,
    )


def test_register_blocks_name_collisions():
    registry = ToolRegistry()
    registry.register(_tool("balance", "ledger"))

    with pytest.raises(ValueError, match="already registered"):
        registry.register(_tool("balance", "search"))

    registry.register(_tool("balance", "search"), allow_override=True)
    assert registry.get("balance").category == "search"


def test_api_tools_are_filtered_by_category():
    registry = ToolRegistry()
    registry.register(_tool("balance", "ledger"))
    registry.register(_tool("send_transaction", "ledger"))
    registry.register(_tool("web_search", "search"))

    ledger = [tool["name"] for tool in registry.get_api_tools(["ledger"])]
    everything = [tool["name"] for tool in registry.get_api_tools()]

    assert ledger == ["balance", "send_transaction"]
    assert everything == ["balance", "send_transaction", "web_search"]
    assert set(registry.get_api_tools()[0]) == {"name", "description", "input_schema"}


def test_disabled_tools_are_hidden_from_api():
    registry = ToolRegistry()
    registry.register(_tool("balance", "ledger", enabled=False))

    assert registry.get_api_tools() == []
    assert registry.count == 1


def test_subset_holds_only_requested_categories():
    registry = ToolRegistry()
    registry.register(_tool("balance", "ledger"))
    registry.register(_tool("web_search", "search"))

    narrowed = registry.subset(["search"])

    assert narrowed.count == 1
    assert narrowed.get("web_search") is not None
    assert narrowed.get("balance") is None


def test_unregister():
    registry = ToolRegistry()
    registry.register(_tool("balance", "ledger"))

    assert registry.unregister("balance") is True
    assert registry.unregister("balance") is False
    assert registry.list_tools() == []
