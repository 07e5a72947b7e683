"""Tests for ethagent/cli/: Click-based CLI commands."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from ethagent.cli.app import async_cmd, cli
from ethagent.cli.formatters import build_table, get_console
from ethagent.errors import AgentRunError, ConfigurationError
from ethagent.types import AgentResult


class _StubAgent:
    def __init__(self, result: AgentResult | None = None, error: AgentRunError | None = None):
        self._result = result
        self._error = error
        self.prompts = []

    async def run(self, prompt):
        self.prompts.append(prompt)
        if self._error is not None:
            raise self._error
        return self._result


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr("ethagent.cli.app.configure_logging", lambda level=None: None)


@pytest.fixture()
def stub_agent(monkeypatch):
    def _install(agent: _StubAgent) -> _StubAgent:
        monkeypatch.setattr("ethagent.cli.app.EthAgentConfig", lambda: object())
        monkeypatch.setattr("ethagent.cli.app.build_agent", lambda config: agent)
        return agent

    return _install


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class TestFormatters:
    def test_no_color_console(self) -> None:
        assert get_console(no_color=True).no_color is True

    def test_build_table(self) -> None:
        table = build_table("Tools", ["Tool", "Description"], [["balance", "Check a balance"]])
        assert table.title == "Tools"
        assert len(table.columns) == 2
        assert table.row_count == 1


class TestAsyncCmd:
    def test_runs_coroutine(self) -> None:
        @async_cmd
        async def _double(x: int) -> int:
            return x * 2

        assert _double(21) == 42


# ---------------------------------------------------------------------------
# ask
# ---------------------------------------------------------------------------


class TestAsk:
    def test_prints_result(self, runner, stub_agent) -> None:
        agent = stub_agent(_StubAgent(result=AgentResult(result="Alice has 10000 ETH", plan_id="p1", attempts=1)))

        outcome = runner.invoke(cli, ["--no-color", "ask", "What is the balance of Alice?"])

        assert outcome.exit_code == 0, outcome.output
        assert "Alice has 10000 ETH" in outcome.output
        assert agent.prompts[0].natural_language == "What is the balance of Alice?"
        assert agent.prompts[0].context == {"network": "foundry local"}

    def test_json_result(self, runner, stub_agent) -> None:
        stub_agent(_StubAgent(result=AgentResult(result="ETH is $3,000", plan_id="p2", attempts=2)))

        outcome = runner.invoke(cli, ["ask", "--json", "ETH price?"])

        assert outcome.exit_code == 0, outcome.output
        assert json.loads(outcome.output) == {
            "success": True,
            "result": "ETH is $3,000",
            "plan_id": "p2",
            "attempts": 2,
        }

    def test_run_error_exits_nonzero(self, runner, stub_agent) -> None:
        stub_agent(_StubAgent(error=AgentRunError("Agent loop failed: Tool server initialization failed: x", attempts=1)))

        outcome = runner.invoke(cli, ["--no-color", "ask", "What is the balance of Alice?"])

        assert outcome.exit_code == 1
        assert "Agent loop failed: Tool server initialization failed" in outcome.output

    def test_run_error_json(self, runner, stub_agent) -> None:
        stub_agent(_StubAgent(error=AgentRunError("Agent loop failed with max retries: bad plan", attempts=3)))

        outcome = runner.invoke(cli, ["ask", "--json", "anything"])

        assert outcome.exit_code == 1
        assert json.loads(outcome.output) == {
            "success": False,
            "error": "Agent loop failed with max retries: bad plan",
            "attempts": 3,
        }

    def test_network_option_reaches_prompt_context(self, runner, stub_agent) -> None:
        agent = stub_agent(_StubAgent(result=AgentResult(result="ok")))

        runner.invoke(cli, ["ask", "--network", "sepolia", "ping"])

        assert agent.prompts[0].context == {"network": "sepolia"}

    def test_invalid_configuration(self, runner, monkeypatch) -> None:
        def _broken():
            raise ConfigurationError("Invalid configuration: No authentication configured. Set ANTHROPIC_API_KEY.")

        monkeypatch.setattr("ethagent.cli.app.EthAgentConfig", _broken)

        outcome = runner.invoke(cli, ["ask", "anything"])

        assert outcome.exit_code == 1
        assert "Invalid configuration" in outcome.output
        assert "ANTHROPIC_API_KEY" in outcome.output


# ---------------------------------------------------------------------------
# tools
# ---------------------------------------------------------------------------


class TestTools:
    def test_lists_tool_server_tools(self, runner, monkeypatch, tool_server_config) -> None:
        config = tool_server_config()
        monkeypatch.setattr("ethagent.cli.app.ToolServerConfig", lambda: config)

        outcome = runner.invoke(cli, ["tools", "--json"])

        assert outcome.exit_code == 0, outcome.output
        payload = json.loads(outcome.output)
        assert payload["server"]["name"] == "fake-foundry"
        assert [tool["name"] for tool in payload["tools"]] == [
            "validate_address", "balance", "get_contract_code", "send_transaction",
        ]

    def test_table_output(self, runner, monkeypatch, tool_server_config) -> None:
        config = tool_server_config()
        monkeypatch.setattr("ethagent.cli.app.ToolServerConfig", lambda: config)

        outcome = runner.invoke(cli, ["--no-color", "tools"])

        assert outcome.exit_code == 0, outcome.output
        assert "get_contract_code" in outcome.output

    def test_start_failure_is_reported(self, runner, monkeypatch, tmp_path) -> None:
        from ethagent.config import ToolServerConfig

        missing = ToolServerConfig(command=str(tmp_path / "foundry-mcp"), _env_file=None)
        monkeypatch.setattr("ethagent.cli.app.ToolServerConfig", lambda: missing)

        outcome = runner.invoke(cli, ["tools"])

        assert outcome.exit_code == 1
        assert "Failed to start tool server" in outcome.output
