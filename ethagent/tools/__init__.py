"""Tool system: the hands the capability profiles use on the ledger and the web."""
from ethagent.tools.bridge import ToolBridge, ToolSessionManager
from ethagent.tools.executor import ToolExecutor, ToolExecutionResult
from ethagent.tools.registry import ToolDefinition, ToolRegistry

__all__ = [
    "ToolRegistry",
    "ToolDefinition",
    "ToolExecutor",
    "ToolExecutionResult",
    "ToolBridge",
    "ToolSessionManager",
]
