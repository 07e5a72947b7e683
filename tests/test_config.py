from __future__ import annotations

import functools

import pytest
from pydantic import ValidationError

from ethagent.config import (
    DEFAULT_MODEL,
    DEFAULT_TOOL_SERVER_BINARY,
    AgentConfig,
    EthAgentConfig,
    ProviderConfig,
    SearchConfig,
    ToolServerConfig,
)
from ethagent.errors import ConfigurationError


def test_provider_config_requires_api_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    with pytest.raises(ValidationError, match="ANTHROPIC_API_KEY"):
        ProviderConfig(_env_file=None)


def test_provider_config_rejects_blank_api_key(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "   ")

    with pytest.raises(ValidationError):
        ProviderConfig(_env_file=None)


def test_provider_config_reads_env(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.setenv("ETHAGENT_PLANNING_MODEL", "claude-planner")
    monkeypatch.delenv("ETHAGENT_EXECUTION_MODEL", raising=False)

    cfg = ProviderConfig(_env_file=None)

    assert cfg.api_key == "sk-ant-test"
    assert cfg.planning_model == "claude-planner"
    assert cfg.execution_model == DEFAULT_MODEL
    assert cfg.temperature == 0.7
    assert cfg.retry_max_retries == 0


def test_provider_config_clamps_runtime_limits():
    cfg = ProviderConfig(
        api_key="sk-ant-test",
        temperature=3.0,
        max_tokens=0,
        retry_max_retries=-2,
        retry_base_delay=4.0,
        retry_max_delay=1.0,
        _env_file=None,
    )

    assert cfg.temperature == 1.0
    assert cfg.max_tokens == 1
    assert cfg.retry_max_retries == 0
    assert cfg.retry_max_delay == 4.0


def test_agent_config_defaults(monkeypatch):
    for name in (
        "ETHAGENT_EVALUATION_THRESHOLD",
        "ETHAGENT_MAX_PLAN_ATTEMPTS",
        "ETHAGENT_REPLAN_ON_INVOCATION_ERROR",
    ):
        monkeypatch.delenv(name, raising=False)

    cfg = AgentConfig(_env_file=None)

    assert cfg.evaluation_threshold == 70
    assert cfg.max_plan_attempts == 3
    assert cfg.replan_on_invocation_error is False
    assert cfg.search_max_turns == 3
    assert cfg.ledger_max_turns == 1


def test_agent_config_clamps_threshold(monkeypatch):
    monkeypatch.setenv("ETHAGENT_EVALUATION_THRESHOLD", "250")
    monkeypatch.setenv("ETHAGENT_MAX_PLAN_ATTEMPTS", "0")

    cfg = AgentConfig(_env_file=None)

    assert cfg.evaluation_threshold == 100
    assert cfg.max_plan_attempts == 1


def test_tool_server_config_reads_binary_and_args(monkeypatch):
    monkeypatch.setenv("FOUNDRY_MCP_BINARY", "/opt/foundry-mcp")
    monkeypatch.setenv("ETHAGENT_TOOL_SERVER_ARGS", "--rpc-url 'http://localhost:8545' --quiet")

    cfg = ToolServerConfig(_env_file=None)

    assert cfg.command == "/opt/foundry-mcp"
    assert cfg.get_args() == ["--rpc-url", "http://localhost:8545", "--quiet"]
    assert cfg.framing == "ndjson"


def test_tool_server_config_defaults(monkeypatch):
    monkeypatch.delenv("FOUNDRY_MCP_BINARY", raising=False)
    monkeypatch.delenv("ETHAGENT_TOOL_SERVER_ARGS", raising=False)

    cfg = ToolServerConfig(_env_file=None)

    assert cfg.command == DEFAULT_TOOL_SERVER_BINARY
    assert cfg.get_args() == []


def test_tool_server_config_unbalanced_quotes_yield_no_args():
    cfg = ToolServerConfig(args="--name 'unterminated", _env_file=None)
    assert cfg.get_args() == []


def test_tool_server_config_rejects_unknown_framing():
    with pytest.raises(ValidationError):
        ToolServerConfig(framing="xml", _env_file=None)


def test_search_config_availability(monkeypatch):
    monkeypatch.delenv("BRAVE_SEARCH_API_KEY", raising=False)
    assert SearchConfig(_env_file=None).is_available is False
    assert SearchConfig(api_key="k", _env_file=None).is_available is True


def test_eth_agent_config_composes_subconfigs():
    cfg = EthAgentConfig(
        provider=ProviderConfig(api_key="sk-ant-test", _env_file=None),
        agent=AgentConfig(evaluation_threshold=80, _env_file=None),
        tool_server=ToolServerConfig(command="foundry-mcp", _env_file=None),
        search=SearchConfig(api_key="k", _env_file=None),
    )

    assert cfg.agent.evaluation_threshold == 80
    assert "threshold=80" in repr(cfg)
    assert "tool_server=foundry-mcp" in repr(cfg)


def test_eth_agent_config_wraps_invalid_subconfig(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setattr("ethagent.config.ProviderConfig", functools.partial(ProviderConfig, _env_file=None))

    with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY") as excinfo:
        EthAgentConfig(
            agent=AgentConfig(_env_file=None),
            tool_server=ToolServerConfig(command="foundry-mcp", _env_file=None),
            search=SearchConfig(api_key="k", _env_file=None),
        )
    assert isinstance(excinfo.value.__cause__, ValidationError)
