"""
Planner: turns a user prompt (and, on replan, the reason the last attempt
failed) into a validated, ordered Plan.
"""

from __future__ import annotations

from typing import Optional

import structlog
from pydantic import ValidationError

from ethagent.api.provider import CompletionProvider
from ethagent.errors import PlanningError
from ethagent.json_output import parse_json_object
from ethagent.profiles import LEDGER_PROFILE, SEARCH_PROFILE, address_book
from ethagent.types import Plan, PlanResponse, UserPrompt

logger = structlog.get_logger(__name__)

PLANNER_INSTRUCTIONS = f"""\
You are a helpful assistant that creates execution plans for Ethereum transactions.

The output MUST be a valid JSON object in the following format:
{{
    "number_of_steps": 1-10,
    "steps": [
        {{
            "step_number": 1-10,
            "agent_name": "{LEDGER_PROFILE}",
            "agent_prompt": "Prompt for the agent to execute"
        }}
    ]
}}

Sub-agents:
- {LEDGER_PROFILE}: An agent that can send transactions to the Ethereum network, with the following tools:
    - send_transaction: Send a transaction to the Ethereum network
    - validate_address: Validate an Ethereum address
    - balance: Get the balance of an Ethereum address
    - get_contract_code: Get the contract code of an Ethereum address
- {SEARCH_PROFILE}: An agent that can search the web for information, with the following tools:
    - web_search: Search the web for information

Example prompts:
- Send 0.001 ETH from Alice to Bob
- What is the balance of Alice?
- What is the current price of ETH?

Known addresses:
{address_book()}
"""

REPLAN_TEMPLATE = (
    "This is a replan request. The user prompt is: {prompt} "
    "and the replan reason is: {reason}"
)


def build_planner_message(prompt: UserPrompt, replan_reason: Optional[str] = None) -> str:
    if replan_reason:
        return REPLAN_TEMPLATE.format(prompt=prompt.natural_language, reason=replan_reason)
    return prompt.natural_language


class Planner:
    """Asks the planning model for a strict-JSON plan and validates it."""

    def __init__(self, provider: CompletionProvider, model: str):
        self._agent = provider.agent(model, PLANNER_INSTRUCTIONS)
        self._model = model

    async def plan(self, prompt: UserPrompt, replan_reason: Optional[str] = None) -> Plan:
        """
        Build a Plan for ``prompt``.

        Raises PlanningError when the model call fails or its reply is not a
        valid plan; the underlying exception is chained.
        """
        message = build_planner_message(prompt, replan_reason)
        logger.info(
            "planner.planning",
            prompt_id=prompt.id,
            replan=replan_reason is not None,
            model=self._model,
        )

        try:
            reply = await self._agent.prompt(message)
        except Exception as exc:
            logger.error("planner.completion_failed", error=f"{type(exc).__name__}: {exc}")
            raise PlanningError(f"Plan creation failed: {exc}") from exc

        logger.debug("planner.reply", response=reply)

        try:
            parsed = PlanResponse.model_validate(parse_json_object(reply))
        except (ValueError, ValidationError) as exc:
            logger.warning("planner.invalid_plan", error=str(exc), response=reply)
            raise PlanningError(f"Plan creation failed: invalid plan JSON: {exc}") from exc

        steps = sorted(parsed.steps, key=lambda step: step.step_number)
        plan = Plan(prompt=prompt, steps=steps, declared_steps=parsed.number_of_steps)
        if not plan.step_count_matches:
            logger.warning(
                "planner.step_count_mismatch",
                plan_id=plan.id,
                declared=plan.declared_steps,
                actual=len(plan.steps),
            )

        logger.info(
            "planner.plan_created",
            plan_id=plan.id,
            steps=[(step.step_number, step.agent_name) for step in plan.steps],
        )
        return plan
