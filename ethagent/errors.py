"""
Error taxonomy for the Plan -> Execute -> Evaluate loop.

Every failure is classified where it is first observed. The dispatcher turns
step-level errors into an ``ExecutionFailure`` carrying a ``replanable`` flag;
the controller is the only place that decides whether a run continues.
"""

from __future__ import annotations

from typing import Any, Optional


class EthAgentError(Exception):
    """Base exception for all eth-agent errors."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigurationError(EthAgentError):
    """Raised when required configuration is missing or invalid."""


class PlanningError(EthAgentError):
    """The planner reply could not be obtained, parsed, or validated."""


class RoutingError(EthAgentError):
    """A plan step names a capability profile that does not exist."""

    def __init__(self, agent_name: str, known: Optional[list[str]] = None):
        super().__init__(
            f"Unknown agent name: {agent_name}",
            {"agent_name": agent_name, "known": list(known or [])},
        )
        self.agent_name = agent_name


class CapabilityInvocationError(EthAgentError):
    """A capability profile failed mid-step (provider or tool failure)."""

    def __init__(
        self,
        message: str,
        profile: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.profile = profile


class StepTimeoutError(CapabilityInvocationError):
    """A capability profile did not finish its step before the deadline."""


class EvaluationError(EthAgentError):
    """The evaluator reply could not be obtained, parsed, or validated."""


class BelowThresholdError(EthAgentError):
    """A step result was judged below the acceptance threshold."""

    def __init__(self, score: int, threshold: int, reasoning: str = ""):
        super().__init__(
            f"Evaluation score is below threshold: {score}",
            {"score": score, "threshold": threshold, "reasoning": reasoning},
        )
        self.score = score
        self.threshold = threshold
        self.reasoning = reasoning


# ---------------------------------------------------------------------------
# Tool Bridge / Tool Server errors
# ---------------------------------------------------------------------------


class ToolBridgeError(EthAgentError):
    """Base class for failures between a profile and the tool backends."""


class ToolServerStartError(ToolBridgeError):
    """The Tool Server process could not be spawned or failed the handshake."""


class TransportError(ToolBridgeError):
    """The Tool Server is unreachable, exited, or its stream is unusable."""


class ToolSerializationError(ToolBridgeError):
    """A Tool Server reply could not be decoded."""


class ToolCallError(ToolBridgeError):
    """The Tool Server answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Any = None, context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)
        self.code = code


class ToolArgumentError(ToolBridgeError):
    """Tool arguments were rejected before any request was sent."""


class SearchError(ToolBridgeError):
    """The web search provider call failed."""


# ---------------------------------------------------------------------------
# Attempt / run outcomes
# ---------------------------------------------------------------------------


class ExecutionFailure(EthAgentError):
    """One execution attempt failed; ``replanable`` decides what happens next."""

    def __init__(
        self,
        message: str,
        replanable: bool,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, {"replanable": replanable})
        self.replanable = replanable
        self.cause = cause


class AgentRunError(EthAgentError):
    """Fatal outcome of ``EthAgent.run``: the single error string the caller sees."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message, {"attempts": attempts})
        self.attempts = attempts
