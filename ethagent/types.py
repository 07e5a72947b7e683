"""
Data Models: the language shared by planner, dispatcher, evaluator and controller.

UserPrompt is what the user asked. PlanResponse is what the planner model must
emit; Plan is the validated, id-stamped version the dispatcher walks. A plan
lives for exactly one attempt: a replan builds a brand new Plan.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _new_id() -> str:
    return str(uuid.uuid4())


class UserPrompt(BaseModel):
    """A natural-language request. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    natural_language: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, text: str, context: Optional[dict[str, Any]] = None) -> "UserPrompt":
        return cls(natural_language=text, context=dict(context or {}))


class PlanStep(BaseModel):
    """One step of a plan, routed to a capability profile by ``agent_name``."""

    step_number: int
    agent_name: str
    agent_prompt: str


class PlanResponse(BaseModel):
    """Strict schema of the planner model's JSON reply."""

    number_of_steps: int
    steps: list[PlanStep]


class PlanStatus(str, Enum):
    PLANNED = "planned"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class Plan(BaseModel):
    """A validated plan for one execution attempt.

    ``current_step`` counts accepted steps and is advanced by the dispatcher;
    ``declared_steps`` is what the planner claimed and may disagree with
    ``len(steps)``.
    """

    id: str = Field(default_factory=_new_id)
    prompt: UserPrompt
    steps: list[PlanStep]
    declared_steps: int
    current_step: int = 0
    status: PlanStatus = PlanStatus.PLANNED

    @property
    def step_count_matches(self) -> bool:
        return self.declared_steps == len(self.steps)

    def advance(self) -> None:
        self.current_step += 1


class Transcript:
    """Ordered results of the completed steps of one attempt. Append-only."""

    def __init__(self) -> None:
        self._entries: list[str] = []

    def append(self, entry: str) -> None:
        self._entries.append(entry)

    def context_block(self) -> str:
        return "\n".join(self._entries)

    @property
    def entries(self) -> tuple[str, ...]:
        return tuple(self._entries)

    @property
    def last(self) -> Optional[str]:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


class EvaluationScore(BaseModel):
    """Strict schema of the evaluator model's JSON reply."""

    score: int = Field(ge=0, le=100)
    reasoning: str


class EvaluationResult(BaseModel):
    plan_id: Optional[str] = None
    original_prompt: str
    score: int
    reasoning: str

    def passed(self, threshold: int) -> bool:
        """Threshold is inclusive on pass."""
        return self.score >= threshold


class ControllerState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AgentResult(BaseModel):
    """Successful outcome of ``EthAgent.run``."""

    result: str
    plan_id: Optional[str] = None
    attempts: int = 0
    error_message: Optional[str] = None
