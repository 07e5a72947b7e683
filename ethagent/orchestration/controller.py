"""
Replan Controller: the bounded Plan -> Execute -> Evaluate loop.

    PLANNING --plan--> EXECUTING --result--> SUCCEEDED
       ^   \\                |
       |    `--budget spent--+--> FAILED
       `---replanable failure'

Every entry into PLANNING spends one attempt from ``max_plan_attempts``. A
planning failure spends its attempt and planning is tried again while budget
remains. A replanable execution failure feeds its message to the next plan as
the replan reason. Anything non-replanable ends the run at once.

The Tool Server session lives for the whole run: it is started on the first
execution attempt, reused by every replan and shut down when ``run`` exits.
"""

from __future__ import annotations

from typing import Optional, Union

import structlog

from ethagent.config import AgentConfig
from ethagent.errors import AgentRunError, ExecutionFailure, PlanningError
from ethagent.orchestration.dispatcher import Dispatcher
from ethagent.orchestration.planner import Planner
from ethagent.tools.bridge import ToolSessionManager
from ethagent.types import AgentResult, ControllerState, Plan, UserPrompt

logger = structlog.get_logger(__name__)


class EthAgent:
    """Entry point: ``await EthAgent.run(prompt)`` -> AgentResult or AgentRunError."""

    def __init__(
        self,
        planner: Planner,
        dispatcher: Dispatcher,
        sessions: ToolSessionManager,
        config: Optional[AgentConfig] = None,
    ):
        self._planner = planner
        self._dispatcher = dispatcher
        self._sessions = sessions
        self._config = config or AgentConfig()
        self._state = ControllerState.PLANNING
        self._attempts = 0

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    def _fail(self, message: str) -> AgentRunError:
        self._state = ControllerState.FAILED
        logger.error("controller.failed", error=message, attempts=self._attempts)
        return AgentRunError(message, attempts=self._attempts)

    async def run(self, prompt: Union[UserPrompt, str]) -> AgentResult:
        """
        Run the loop for one user prompt.

        Returns the last accepted step result. Raises AgentRunError with either
        ``Agent loop failed: <reason>`` (non-replanable) or
        ``Agent loop failed with max retries: <last reason>`` (budget spent).
        """
        if isinstance(prompt, str):
            prompt = UserPrompt.create(prompt)

        max_attempts = self._config.max_plan_attempts
        self._state = ControllerState.PLANNING
        self._attempts = 0
        replan_reason: Optional[str] = None
        plan: Optional[Plan] = None

        logger.info("controller.run_started", prompt_id=prompt.id, prompt=prompt.natural_language)
        try:
            while True:
                if self._state is ControllerState.PLANNING:
                    self._attempts += 1
                    logger.info(
                        "controller.planning",
                        attempt=self._attempts,
                        max_attempts=max_attempts,
                        replan_reason=replan_reason,
                    )
                    try:
                        plan = await self._planner.plan(prompt, replan_reason)
                    except PlanningError as exc:
                        logger.warning(
                            "controller.planning_failed",
                            attempt=self._attempts,
                            error=exc.message,
                        )
                        if self._attempts >= max_attempts:
                            raise self._fail(f"Agent loop failed with max retries: {exc.message}") from exc
                        continue
                    self._state = ControllerState.EXECUTING

                elif self._state is ControllerState.EXECUTING:
                    assert plan is not None
                    try:
                        result = await self._dispatcher.execute(prompt, plan)
                    except ExecutionFailure as failure:
                        if not failure.replanable:
                            raise self._fail(f"Agent loop failed: {failure.message}") from failure
                        if self._attempts >= max_attempts:
                            raise self._fail(
                                f"Agent loop failed with max retries: {failure.message}"
                            ) from failure
                        logger.warning(
                            "controller.replanning",
                            attempt=self._attempts,
                            reason=failure.message,
                            progress=plan.current_step,
                        )
                        replan_reason = failure.message
                        self._state = ControllerState.PLANNING
                        continue

                    self._state = ControllerState.SUCCEEDED
                    logger.info(
                        "controller.succeeded",
                        plan_id=plan.id,
                        attempts=self._attempts,
                        result=result,
                    )
                    return AgentResult(result=result, plan_id=plan.id, attempts=self._attempts)

                else:
                    raise self._fail(f"Agent loop failed: invalid controller state {self._state.value}")
        finally:
            await self._sessions.close()
