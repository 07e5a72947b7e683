"""
Shared fixtures for the eth-agent test suite.

Provides a scripted completion provider (no network), configs, and a factory
for ToolServerConfig objects that launch tests/fake_tool_server.py with the
current interpreter.
"""

from __future__ import annotations

import inspect
import shlex
import sys
from pathlib import Path
from typing import Any, Optional

import pytest
import structlog

from ethagent.api.provider import CompletionAgent, CompletionProvider
from ethagent.config import AgentConfig, ProviderConfig, SearchConfig, ToolServerConfig
from ethagent.orchestration.evaluator import EVALUATOR_INSTRUCTIONS
from ethagent.orchestration.planner import PLANNER_INSTRUCTIONS
from ethagent.profiles import LEDGER_INSTRUCTIONS, SEARCH_INSTRUCTIONS
from ethagent.tools.registry import ToolRegistry

FAKE_SERVER = Path(__file__).with_name("fake_tool_server.py")


@pytest.fixture(autouse=True, scope="session")
def _route_structlog_through_logging():
    """Send structlog events through stdlib logging instead of printing them to stdout."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    yield
    structlog.reset_defaults()


# ---------------------------------------------------------------------------
# Scripted completion provider
# ---------------------------------------------------------------------------

_ROLES = {
    PLANNER_INSTRUCTIONS: "planner",
    EVALUATOR_INSTRUCTIONS: "evaluator",
    LEDGER_INSTRUCTIONS: "ethereum_agent",
    SEARCH_INSTRUCTIONS: "search_agent",
}


class ScriptedAgent(CompletionAgent):
    """
    Pops the next scripted reply for its role on every prompt.

    A reply may be a string, an exception instance (raised), or a callable
    ``(tools, text)`` returning a string or awaitable string, which lets a
    profile reply actually exercise its tool registry.
    """

    def __init__(self, provider: "ScriptedProvider", role: str, tools: Optional[ToolRegistry]):
        self._provider = provider
        self.role = role
        self.tools = tools

    async def prompt(self, text: str, max_turns: int = 1) -> str:
        self._provider.calls[self.role].append((text, max_turns))
        replies = self._provider.replies[self.role]
        if not replies:
            raise AssertionError(f"No scripted reply left for {self.role}")
        reply = replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(self.tools, text)
            if inspect.isawaitable(reply):
                reply = await reply
        return reply


class ScriptedProvider(CompletionProvider):
    def __init__(
        self,
        planner: Optional[list[Any]] = None,
        evaluator: Optional[list[Any]] = None,
        ethereum_agent: Optional[list[Any]] = None,
        search_agent: Optional[list[Any]] = None,
    ):
        self.replies: dict[str, list[Any]] = {
            "planner": list(planner or []),
            "evaluator": list(evaluator or []),
            "ethereum_agent": list(ethereum_agent or []),
            "search_agent": list(search_agent or []),
        }
        self.calls: dict[str, list[tuple[str, int]]] = {role: [] for role in self.replies}
        self.built: list[dict[str, Any]] = []

    def agent(
        self,
        model: str,
        instructions: str,
        tools: Optional[ToolRegistry] = None,
        temperature: Optional[float] = None,
    ) -> ScriptedAgent:
        role = _ROLES[instructions]
        self.built.append({
            "role": role,
            "model": model,
            "temperature": temperature,
            "tools": sorted(t["name"] for t in tools.list_tools()) if tools is not None else [],
        })
        return ScriptedAgent(self, role, tools)


@pytest.fixture()
def scripted_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider


# ---------------------------------------------------------------------------
# Configs
# ---------------------------------------------------------------------------

@pytest.fixture()
def provider_config() -> ProviderConfig:
    return ProviderConfig(api_key="sk-ant-test")


@pytest.fixture()
def agent_config() -> AgentConfig:
    return AgentConfig(
        evaluation_threshold=70,
        max_plan_attempts=3,
        step_timeout_seconds=30.0,
        replan_on_invocation_error=False,
    )


@pytest.fixture()
def search_config() -> SearchConfig:
    return SearchConfig(api_key="brave-test-key", endpoint="https://search.test/res/v1/web/search")


@pytest.fixture()
def tool_call_log(tmp_path: Path) -> Path:
    """File the fake tool server appends every received tools/call to."""
    return tmp_path / "tool_calls.log"


@pytest.fixture()
def tool_server_config(tool_call_log: Path):
    """Factory: ToolServerConfig that launches the fake tool server."""

    def _make(mode: str = "normal", framing: str = "ndjson", timeout: float = 10.0) -> ToolServerConfig:
        args = [
            str(FAKE_SERVER),
            "--mode", mode,
            "--framing", framing,
            "--log", str(tool_call_log),
        ]
        return ToolServerConfig(
            name="fake-foundry",
            command=sys.executable,
            args=shlex.join(args),
            timeout_seconds=timeout,
            framing=framing,
        )

    return _make


def read_tool_calls(log_path: Path) -> list[str]:
    if not log_path.exists():
        return []
    return [line for line in log_path.read_text().splitlines() if line.strip()]


@pytest.fixture()
def tool_calls_received(tool_call_log: Path):
    """Callable returning the raw tools/call params the fake server received."""
    return lambda: read_tool_calls(tool_call_log)
