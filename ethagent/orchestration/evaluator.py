"""
Evaluator: scores one step result against the step prompt and the user's request.
"""

from __future__ import annotations

from typing import Optional

import structlog
from pydantic import ValidationError

from ethagent.api.provider import CompletionProvider
from ethagent.errors import EvaluationError
from ethagent.json_output import parse_json_object
from ethagent.types import EvaluationResult, EvaluationScore, UserPrompt

logger = structlog.get_logger(__name__)

EVALUATOR_INSTRUCTIONS = """\
You are an evaluator of agent execution results.
You will be given a result from an agent, the agent prompt that the agent was given, and the user prompt it serves.
Evaluate the result and determine if it is aligned with the agent prompt and the user prompt.
Return a score between 0 and 100.
You should only output a valid JSON object in the following format:
{
    "score": 0-100,
    "reasoning": "Reasoning for the score"
}
"""


def build_evaluation_message(prompt: UserPrompt, step_prompt: str, step_result: str) -> str:
    return (
        f"Evaluate the following result: {step_result} "
        f"against the current agent prompt: {step_prompt} "
        f"and user prompt: {prompt.natural_language}"
    )


class Evaluator:
    def __init__(self, provider: CompletionProvider, model: str):
        self._agent = provider.agent(model, EVALUATOR_INSTRUCTIONS)
        self._model = model

    async def evaluate(
        self,
        prompt: UserPrompt,
        step_prompt: str,
        step_result: str,
        plan_id: Optional[str] = None,
    ) -> EvaluationResult:
        """Judge one step. Raises EvaluationError on any call, parse or schema failure."""
        message = build_evaluation_message(prompt, step_prompt, step_result)
        try:
            reply = await self._agent.prompt(message)
        except Exception as exc:
            logger.error("evaluator.completion_failed", error=f"{type(exc).__name__}: {exc}")
            raise EvaluationError(f"Evaluation failed: {exc}") from exc

        try:
            score = EvaluationScore.model_validate(parse_json_object(reply))
        except (ValueError, ValidationError) as exc:
            logger.warning("evaluator.invalid_reply", error=str(exc), response=reply)
            raise EvaluationError(f"Evaluation failed: invalid evaluation JSON: {exc}") from exc

        logger.info("evaluator.scored", prompt_id=prompt.id, score=score.score)
        return EvaluationResult(
            plan_id=plan_id,
            original_prompt=prompt.natural_language,
            score=score.score,
            reasoning=score.reasoning,
        )
