"""
Main: logging setup and the wiring of a ready-to-run EthAgent.

``build_agent`` is the single place where configuration, the completion
provider, the Tool Server session manager, the planner, the dispatcher and the
evaluator are put together. Entry points (the CLI, tests, embedding code) call
``configure_logging()`` once and then ``build_agent()``.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import httpx
import structlog

from ethagent.api.claude import AnthropicProvider
from ethagent.api.provider import CompletionProvider
from ethagent.config import EthAgentConfig
from ethagent.orchestration import Dispatcher, EthAgent, Evaluator, Planner
from ethagent.profiles import default_profiles
from ethagent.tools.bridge import ToolSessionManager

_TRUNCATED_KEYS = {"response", "result", "prompt", "payload"}
_MAX_DISPLAY_LEN = 200
_SECRET_SUFFIXES = ("api_key", "token")


def _truncate_and_mask(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Structlog processor that keeps log lines readable and free of secrets.

    Free-text fields (model replies, step results, prompts) are cut to a fixed
    length; values under keys ending in ``api_key`` or ``token`` are masked.
    """
    for key, val in list(event_dict.items()):
        if key.lower().endswith(_SECRET_SUFFIXES) and val:
            event_dict[key] = "***"
        elif key in _TRUNCATED_KEYS:
            text = val if isinstance(val, str) else str(val)
            if len(text) > _MAX_DISPLAY_LEN:
                event_dict[key] = text[:_MAX_DISPLAY_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structlog and standard-library logging for eth-agent entry points.

    Safe to call more than once; subsequent calls are no-ops. The level comes
    from ``level`` or ``ETHAGENT_LOG_LEVEL`` (default WARNING).
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    level_name = (level or os.environ.get("ETHAGENT_LOG_LEVEL") or "WARNING").upper()
    numeric_level = getattr(logging, level_name, None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.WARNING

    logging.basicConfig(format="%(message)s", level=numeric_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _truncate_and_mask,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def build_agent(
    config: Optional[EthAgentConfig] = None,
    provider: Optional[CompletionProvider] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> EthAgent:
    """Wire an EthAgent from configuration.

    ``provider`` replaces the Anthropic provider (tests inject scripted ones);
    ``http_client`` is handed to the search tool.
    """
    config = config or EthAgentConfig()
    provider = provider or AnthropicProvider(config.provider)

    sessions = ToolSessionManager(config.tool_server, config.search, http_client=http_client)
    evaluator = Evaluator(provider, config.provider.evaluation_model)
    dispatcher = Dispatcher(
        provider,
        config.provider.execution_model,
        evaluator,
        sessions,
        config=config.agent,
        profiles=default_profiles(config.agent, temperature=config.provider.temperature),
    )
    planner = Planner(provider, config.provider.planning_model)
    return EthAgent(planner, dispatcher, sessions, config=config.agent)
