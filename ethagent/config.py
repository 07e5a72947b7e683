"""
Configuration for eth-agent.

All configuration flows through this module. Values are loaded from environment
variables (optionally via a .env file at the project root) and validated with
Pydantic. Every component receives its slice of configuration at construction
time; nothing reads the environment on its own.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings
import structlog

from ethagent.errors import ConfigurationError


logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above ethagent/),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

DEFAULT_MODEL = "claude-3-5-haiku-20241022"
DEFAULT_TOOL_SERVER_BINARY = "./foundry-mcp"
DEFAULT_SEARCH_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"


class ProviderConfig(BaseSettings):
    """Configuration for the completion backend (Anthropic Messages API)."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    planning_model: str = Field(DEFAULT_MODEL, alias="ETHAGENT_PLANNING_MODEL")
    execution_model: str = Field(DEFAULT_MODEL, alias="ETHAGENT_EXECUTION_MODEL")
    evaluation_model: str = Field(DEFAULT_MODEL, alias="ETHAGENT_EVALUATION_MODEL")
    max_tokens: int = Field(4096, alias="ETHAGENT_MAX_TOKENS")
    temperature: float = Field(0.7, alias="ETHAGENT_TEMPERATURE")
    request_timeout_seconds: float = Field(120.0, alias="ETHAGENT_REQUEST_TIMEOUT_SECONDS")
    # Call-level retry is opt-in; the Plan/Execute budget is the only default retry.
    retry_max_retries: int = Field(0, alias="ETHAGENT_RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(0.5, alias="ETHAGENT_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(8.0, alias="ETHAGENT_RETRY_MAX_DELAY")
    retry_exponential_base: float = Field(2.0, alias="ETHAGENT_RETRY_EXPONENTIAL_BASE")
    retry_jitter_range: float = Field(0.25, alias="ETHAGENT_RETRY_JITTER_RANGE")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def require_api_key(self) -> "ProviderConfig":
        if isinstance(self.api_key, str):
            self.api_key = self.api_key.strip() or None
        if not self.api_key:
            raise ValueError("No authentication configured. Set ANTHROPIC_API_KEY.")
        return self

    @model_validator(mode="after")
    def normalize_runtime_limits(self) -> "ProviderConfig":
        self.max_tokens = max(1, int(self.max_tokens))
        self.temperature = max(0.0, min(1.0, float(self.temperature)))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        self.retry_max_retries = max(0, int(self.retry_max_retries))
        self.retry_base_delay = max(0.05, float(self.retry_base_delay))
        self.retry_max_delay = max(self.retry_base_delay, float(self.retry_max_delay))
        self.retry_exponential_base = max(1.0, float(self.retry_exponential_base))
        self.retry_jitter_range = max(0.0, min(1.0, float(self.retry_jitter_range)))
        return self


class AgentConfig(BaseSettings):
    """Configuration for the Plan -> Execute -> Evaluate control loop."""

    evaluation_threshold: int = Field(70, alias="ETHAGENT_EVALUATION_THRESHOLD")
    max_plan_attempts: int = Field(3, alias="ETHAGENT_MAX_PLAN_ATTEMPTS")
    step_timeout_seconds: float = Field(300.0, alias="ETHAGENT_STEP_TIMEOUT")
    replan_on_invocation_error: bool = Field(False, alias="ETHAGENT_REPLAN_ON_INVOCATION_ERROR")
    search_max_turns: int = Field(3, alias="ETHAGENT_SEARCH_MAX_TURNS")
    ledger_max_turns: int = Field(1, alias="ETHAGENT_LEDGER_MAX_TURNS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AgentConfig":
        self.evaluation_threshold = max(0, min(100, int(self.evaluation_threshold)))
        self.max_plan_attempts = max(1, int(self.max_plan_attempts))
        self.step_timeout_seconds = max(1.0, float(self.step_timeout_seconds))
        self.search_max_turns = max(1, int(self.search_max_turns))
        self.ledger_max_turns = max(1, int(self.ledger_max_turns))
        return self


class ToolServerConfig(BaseSettings):
    """How to launch and talk to the external Tool Server (MCP over stdio)."""

    name: str = Field("foundry", alias="ETHAGENT_TOOL_SERVER_NAME")
    command: str = Field(DEFAULT_TOOL_SERVER_BINARY, alias="FOUNDRY_MCP_BINARY")
    args: str = Field("", alias="ETHAGENT_TOOL_SERVER_ARGS")
    timeout_seconds: float = Field(20.0, alias="ETHAGENT_TOOL_SERVER_TIMEOUT")
    framing: Literal["ndjson", "content-length"] = Field(
        "ndjson", alias="ETHAGENT_TOOL_SERVER_FRAMING"
    )

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    def get_args(self) -> list[str]:
        """Split the shell-style argument string into argv entries."""
        try:
            return shlex.split(self.args)
        except ValueError:
            logger.warning("config.tool_server_args_unparseable", args=self.args)
            return []

    @model_validator(mode="after")
    def normalize_timeout(self) -> "ToolServerConfig":
        self.timeout_seconds = max(0.1, float(self.timeout_seconds))
        return self


class SearchConfig(BaseSettings):
    """Configuration for the web search provider (Brave Search)."""

    api_key: Optional[str] = Field(None, alias="BRAVE_SEARCH_API_KEY")
    endpoint: str = Field(DEFAULT_SEARCH_ENDPOINT, alias="ETHAGENT_SEARCH_ENDPOINT")
    timeout_seconds: float = Field(15.0, alias="ETHAGENT_SEARCH_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)


class EthAgentConfig:
    """
    Master configuration that composes all subsystem configs.

    This is the single source of truth handed to ``build_agent``.
    """

    def __init__(
        self,
        provider: Optional[ProviderConfig] = None,
        agent: Optional[AgentConfig] = None,
        tool_server: Optional[ToolServerConfig] = None,
        search: Optional[SearchConfig] = None,
    ):
        try:
            self.provider = provider or ProviderConfig()
            self.agent = agent or AgentConfig()
            self.tool_server = tool_server or ToolServerConfig()
            self.search = search or SearchConfig()
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

        if not self.search.is_available:
            logger.warning("config.search_key_missing", hint="Set BRAVE_SEARCH_API_KEY")

    def __repr__(self) -> str:
        return (
            f"EthAgentConfig(planning={self.provider.planning_model}, "
            f"execution={self.provider.execution_model}, "
            f"evaluation={self.provider.evaluation_model}, "
            f"threshold={self.agent.evaluation_threshold}, "
            f"tool_server={self.tool_server.command})"
        )
