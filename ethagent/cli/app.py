"""CLI application: Click-based entry point for eth-agent.

    ethagent ask "What is the balance of Alice?"
    ethagent ask --json "Send 0.001 ETH from Alice to Bob"
    ethagent tools

One prompt per invocation; there is no interactive mode.
"""

from __future__ import annotations

import asyncio
import functools
import json as json_mod
from typing import Any

import click
from rich.markup import escape as markup_escape
from rich.panel import Panel

from ethagent.cli.formatters import build_table, get_console
from ethagent.config import EthAgentConfig, ToolServerConfig
from ethagent.errors import AgentRunError, ConfigurationError, EthAgentError
from ethagent.main import build_agent, configure_logging
from ethagent.tools.mcp import ToolServerSession
from ethagent.types import UserPrompt

DEFAULT_NETWORK = "foundry local"


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log progress at INFO level")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool) -> None:
    """eth-agent - plan, execute and evaluate Ethereum tasks."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color
    configure_logging("INFO" if verbose else None)


@cli.command("ask")
@click.argument("prompt")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.option("--network", default=DEFAULT_NETWORK, show_default=True, help="Network context for the request")
@click.pass_context
@async_cmd
async def ask_cmd(ctx: click.Context, prompt: str, json_output: bool, network: str) -> None:
    """Run one natural-language PROMPT through plan, execute and evaluate."""
    console = get_console(no_color=ctx.obj.get("no_color", False))

    try:
        config = EthAgentConfig()
    except ConfigurationError as exc:
        raise click.ClickException(exc.message) from exc

    agent = build_agent(config)
    user_prompt = UserPrompt.create(prompt, context={"network": network})

    try:
        result = await agent.run(user_prompt)
    except AgentRunError as exc:
        if json_output:
            click.echo(json_mod.dumps(
                {"success": False, "error": exc.message, "attempts": exc.attempts},
                indent=2,
            ))
        else:
            console.print(f"[red]Error:[/red] {markup_escape(exc.message)}")
        ctx.exit(1)

    if json_output:
        click.echo(json_mod.dumps(
            {
                "success": True,
                "result": result.result,
                "plan_id": result.plan_id,
                "attempts": result.attempts,
            },
            indent=2,
        ))
        return

    console.print(Panel(
        markup_escape(result.result),
        title="Result",
        subtitle=f"attempts: {result.attempts}",
    ))


@cli.command("tools")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def tools_cmd(ctx: click.Context, json_output: bool) -> None:
    """Start the Tool Server and list the tools it exposes."""
    console = get_console(no_color=ctx.obj.get("no_color", False))
    config = ToolServerConfig()

    try:
        async with ToolServerSession(config) as session:
            tools = await session.list_tools()
            server_info = session.server_info
    except EthAgentError as exc:
        raise click.ClickException(str(exc)) from exc

    if json_output:
        click.echo(json_mod.dumps({"server": server_info, "tools": tools}, indent=2))
        return

    rows = [[tool.get("name", "?"), tool.get("description", "")] for tool in tools]
    console.print(build_table(
        f"{config.name} ({server_info.get('name', config.command)})",
        ["Tool", "Description"],
        rows,
    ))
