"""
Claude API Client: the Anthropic implementation of the Completion Provider.

ClaudeEngine wraps the Anthropic SDK: one ``think()`` call is one Messages API
request, with a hard per-request timeout and the opt-in transient-error retry.
ClaudeAgent binds the engine to a model, a set of instructions and (optionally)
a tool registry; tool-using agents run through the bounded AgenticLoop.
"""

from __future__ import annotations

import asyncio
import socket
import time
from typing import Any, Optional

import anthropic
import structlog

from ethagent.api.provider import CompletionAgent, CompletionProvider
from ethagent.config import ProviderConfig
from ethagent.harness.loop import AgenticLoop
from ethagent.harness.retry import RetryConfig, with_retries
from ethagent.tools.executor import ToolExecutor
from ethagent.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)


class ClaudeEngine:
    """
    Stateless wrapper over the Anthropic Messages API.

    Receives instructions and messages, returns the raw Message. Telemetry is
    the only state it keeps.
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        if client is None:
            self._async_client = anthropic.AsyncAnthropic(api_key=config.api_key)
            self._verify_base_url_dns()
        else:
            self._async_client = client
        self._default_model = config.execution_model
        self._max_tokens = config.max_tokens
        self._request_timeout_seconds = float(config.request_timeout_seconds)
        self._retry_config = RetryConfig(
            max_retries=config.retry_max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            exponential_base=config.retry_exponential_base,
            jitter_range=config.retry_jitter_range,
        )

        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._total_calls = 0
        self._last_call_time: Optional[float] = None

        logger.info(
            "claude_engine.initialized",
            default_model=self._default_model,
            base_url=str(self._async_client.base_url),
        )

    def _verify_base_url_dns(self) -> None:
        """Warn early when the configured API host cannot be resolved."""
        host = self._async_client.base_url.host
        if not host:
            return
        try:
            socket.getaddrinfo(host, None)
        except OSError as exc:
            logger.warning(
                "claude_engine.unresolvable_api_host",
                host=host,
                base_url=str(self._async_client.base_url),
                error=str(exc),
            )

    async def think(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        tool_choice: Optional[dict[str, Any]] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> anthropic.types.Message:
        """
        Make one Messages API request.

        Args:
            system_prompt: The agent's instructions.
            messages: Conversation so far (user / assistant / tool_result turns).
            tools: Tool definitions in API format; omitted when empty.
            tool_choice: Optional tool_choice, only sent together with tools.
            model: Override the default (execution) model.
            temperature: Sampling temperature; provider default when None.
            max_tokens: Override the configured max tokens.

        Raises the SDK's exceptions (or asyncio.TimeoutError) unchanged once
        the retry budget is spent.
        """
        start_time = time.monotonic()

        kwargs: dict[str, Any] = {
            "model": model or self._default_model,
            "max_tokens": max_tokens or self._max_tokens,
            "system": system_prompt,
            "messages": messages,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if tools:
            kwargs["tools"] = tools
            if tool_choice:
                kwargs["tool_choice"] = tool_choice

        async def _create() -> anthropic.types.Message:
            return await asyncio.wait_for(
                self._async_client.messages.create(**kwargs),
                timeout=self._request_timeout_seconds,
            )

        try:
            response = await with_retries(_create, config=self._retry_config)
        except anthropic.APIConnectionError as e:
            logger.error(
                "claude_engine.connection_error",
                error=str(e),
                base_url=str(self._async_client.base_url),
            )
            raise
        except anthropic.RateLimitError as e:
            logger.warning("claude_engine.rate_limited", error=str(e))
            raise
        except anthropic.APIError as e:
            logger.error(
                "claude_engine.api_error",
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            raise
        except asyncio.TimeoutError:
            logger.error(
                "claude_engine.request_timeout",
                timeout=self._request_timeout_seconds,
                model=kwargs["model"],
            )
            raise

        elapsed = time.monotonic() - start_time
        self._total_input_tokens += response.usage.input_tokens
        self._total_output_tokens += response.usage.output_tokens
        self._total_calls += 1
        self._last_call_time = elapsed

        logger.debug(
            "claude_engine.response",
            model=kwargs["model"],
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            elapsed_seconds=round(elapsed, 2),
            stop_reason=response.stop_reason,
            tool_calls=sum(1 for b in response.content if b.type == "tool_use"),
        )
        return response

    def extract_text(self, response: anthropic.types.Message) -> str:
        """Extract all text content from a response, ignoring tool calls."""
        parts = []
        for block in response.content:
            if block.type == "text":
                parts.append(block.text)
        return "\n".join(parts)

    def extract_tool_calls(self, response: anthropic.types.Message) -> list[dict[str, Any]]:
        """Extract all tool use blocks from a response."""
        calls = []
        for block in response.content:
            if block.type == "tool_use":
                calls.append({
                    "id": block.id,
                    "name": block.name,
                    "input": block.input,
                })
        return calls

    @property
    def telemetry(self) -> dict[str, Any]:
        return {
            "total_calls": self._total_calls,
            "total_input_tokens": self._total_input_tokens,
            "total_output_tokens": self._total_output_tokens,
            "total_tokens": self._total_input_tokens + self._total_output_tokens,
            "last_call_seconds": self._last_call_time if self._last_call_time is not None else 0.0,
        }


class ClaudeAgent(CompletionAgent):
    """A model + instructions (+ tools) ready to answer prompts."""

    def __init__(
        self,
        engine: ClaudeEngine,
        model: str,
        instructions: str,
        tools: Optional[ToolRegistry] = None,
        temperature: Optional[float] = None,
    ):
        self._engine = engine
        self._model = model
        self._instructions = instructions
        self._temperature = temperature
        self._registry = tools
        self._api_tools = tools.get_api_tools() if tools is not None else []

    @property
    def tool_names(self) -> list[str]:
        return [tool["name"] for tool in self._api_tools]

    async def prompt(self, text: str, max_turns: int = 1) -> str:
        messages = [{"role": "user", "content": text}]
        if not self._api_tools:
            response = await self._engine.think(
                system_prompt=self._instructions,
                messages=messages,
                model=self._model,
                temperature=self._temperature,
            )
            return self._engine.extract_text(response)

        loop = AgenticLoop(self._engine, ToolExecutor(self._registry), max_turns=max_turns)
        result = await loop.run(
            system_prompt=self._instructions,
            messages=messages,
            tools=self._api_tools,
            model=self._model,
            temperature=self._temperature,
        )
        return result.text


class AnthropicProvider(CompletionProvider):
    """Completion Provider backed by a single shared ClaudeEngine."""

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self._engine = ClaudeEngine(config, client=client)

    @property
    def engine(self) -> ClaudeEngine:
        return self._engine

    def agent(
        self,
        model: str,
        instructions: str,
        tools: Optional[ToolRegistry] = None,
        temperature: Optional[float] = None,
    ) -> ClaudeAgent:
        return ClaudeAgent(
            self._engine,
            model=model,
            instructions=instructions,
            tools=tools,
            temperature=temperature,
        )
