"""
Dispatcher: executes one Plan, step by step, and judges every step.

For each step, in order:
  1. route ``agent_name`` to a capability profile
  2. prompt the profile with the step prompt plus the results so far
  3. have the evaluator score the raw response
  4. accept (advance the plan) or fail the attempt

Every failure leaves as an ``ExecutionFailure`` whose ``replanable`` flag tells
the controller whether another plan is worth trying.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from ethagent.api.provider import CompletionAgent, CompletionProvider
from ethagent.config import AgentConfig
from ethagent.errors import (
    BelowThresholdError,
    CapabilityInvocationError,
    EthAgentError,
    EvaluationError,
    ExecutionFailure,
    RoutingError,
    StepTimeoutError,
    ToolCallError,
    ToolSerializationError,
    ToolServerStartError,
    TransportError,
)
from ethagent.orchestration.evaluator import Evaluator
from ethagent.profiles import CapabilityProfile, default_profiles
from ethagent.tools.bridge import ToolBridge, ToolSessionManager
from ethagent.tools.registry import ToolRegistry
from ethagent.types import Plan, PlanStatus, PlanStep, Transcript, UserPrompt

logger = structlog.get_logger(__name__)

PLACEHOLDER_RESULT = "Failed to get response from agent"
PREVIOUS_STEPS_HEADER = "\n\nPrevious steps:\n"

# A broken tool channel cannot be fixed by a new plan: no reconnect is attempted.
_FATAL_TOOL_ERRORS = (ToolServerStartError, TransportError, ToolSerializationError, ToolCallError)


def build_step_prompt(step: PlanStep, transcript: Transcript) -> str:
    if not transcript:
        return step.agent_prompt
    return step.agent_prompt + PREVIOUS_STEPS_HEADER + transcript.context_block()


class Dispatcher:
    """Runs the steps of a plan through the capability profiles."""

    def __init__(
        self,
        provider: CompletionProvider,
        model: str,
        evaluator: Evaluator,
        sessions: ToolSessionManager,
        config: Optional[AgentConfig] = None,
        profiles: Optional[dict[str, CapabilityProfile]] = None,
    ):
        self._provider = provider
        self._model = model
        self._evaluator = evaluator
        self._sessions = sessions
        self._config = config or AgentConfig()
        self._profiles = profiles if profiles is not None else default_profiles(self._config)

    @property
    def profiles(self) -> dict[str, CapabilityProfile]:
        return dict(self._profiles)

    def _build_agents(self, bridge: ToolBridge) -> dict[str, CompletionAgent]:
        registry = ToolRegistry()
        bridge.register_tools(registry)
        return {
            name: self._provider.agent(
                self._model,
                profile.instructions,
                tools=registry.subset([profile.tool_category]),
                temperature=profile.temperature,
            )
            for name, profile in self._profiles.items()
        }

    async def execute(self, prompt: UserPrompt, plan: Plan) -> str:
        """
        Execute ``plan`` and return the last step's response.

        Raises ExecutionFailure on the first failing step; nothing after it runs.
        """
        try:
            bridge = await self._sessions.acquire()
        except EthAgentError as exc:
            logger.error("dispatcher.tool_server_unavailable", error=str(exc))
            raise ExecutionFailure(
                f"Tool server initialization failed: {exc}", replanable=False, cause=exc
            ) from exc

        agents = self._build_agents(bridge)
        transcript = Transcript()
        plan.status = PlanStatus.EXECUTING

        for step in plan.steps:
            try:
                await self._run_step(prompt, plan, step, agents, transcript)
            except ExecutionFailure as failure:
                plan.status = PlanStatus.FAILED
                logger.error(
                    "dispatcher.step_failed",
                    plan_id=plan.id,
                    step=step.step_number,
                    agent=step.agent_name,
                    error=failure.message,
                    replanable=failure.replanable,
                )
                raise

        plan.status = PlanStatus.COMPLETED
        if not transcript:
            logger.warning("dispatcher.empty_plan", plan_id=plan.id)
        result = transcript.last if transcript.last is not None else PLACEHOLDER_RESULT
        logger.info("dispatcher.plan_completed", plan_id=plan.id, steps=plan.current_step, result=result)
        return result

    async def _run_step(
        self,
        prompt: UserPrompt,
        plan: Plan,
        step: PlanStep,
        agents: dict[str, CompletionAgent],
        transcript: Transcript,
    ) -> None:
        profile = self._profiles.get(step.agent_name)
        if profile is None:
            error = RoutingError(step.agent_name, known=sorted(self._profiles))
            raise ExecutionFailure(error.message, replanable=True, cause=error) from error

        logger.info(
            "dispatcher.step_started",
            plan_id=plan.id,
            step=step.step_number,
            agent=profile.name,
            prompt=step.agent_prompt,
        )

        step_prompt = build_step_prompt(step, transcript)
        try:
            response = await self._invoke(profile, agents[profile.name], step_prompt)
        except StepTimeoutError as exc:
            raise ExecutionFailure(exc.message, replanable=True, cause=exc) from exc
        except _FATAL_TOOL_ERRORS as exc:
            raise ExecutionFailure(
                f"Failed to get response from {profile.description}: {exc}",
                replanable=False,
                cause=exc,
            ) from exc
        except Exception as exc:
            error = CapabilityInvocationError(
                f"Failed to get response from {profile.description}: {exc}",
                profile=profile.name,
            )
            raise ExecutionFailure(
                error.message,
                replanable=self._config.replan_on_invocation_error,
                cause=error,
            ) from exc

        logger.info("dispatcher.step_response", step=step.step_number, response=response)
        transcript.append(response)

        try:
            evaluation = await self._evaluator.evaluate(
                prompt, step.agent_prompt, response, plan_id=plan.id
            )
        except EvaluationError as exc:
            raise ExecutionFailure(exc.message, replanable=True, cause=exc) from exc

        threshold = self._config.evaluation_threshold
        if not evaluation.passed(threshold):
            error = BelowThresholdError(evaluation.score, threshold, evaluation.reasoning)
            raise ExecutionFailure(error.message, replanable=True, cause=error) from error

        plan.advance()
        logger.info(
            "dispatcher.step_accepted",
            plan_id=plan.id,
            step=step.step_number,
            score=evaluation.score,
            progress=plan.current_step,
        )

    async def _invoke(self, profile: CapabilityProfile, agent: CompletionAgent, text: str) -> str:
        """Prompt ``agent`` under the step deadline; the provider's own timeouts pass through."""
        timeout = self._config.step_timeout_seconds
        task = asyncio.ensure_future(agent.prompt(text, max_turns=profile.max_turns))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            raise StepTimeoutError(
                f"Step deadline of {timeout}s exceeded by {profile.description}",
                profile=profile.name,
            )
        return task.result()
