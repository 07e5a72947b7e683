"""
Completion Provider interface.

The orchestration layer only ever talks to these two abstractions, so the
planner, dispatcher and evaluator stay independent of any particular LLM
vendor. ``ethagent.api.claude`` is the Anthropic implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ethagent.tools.registry import ToolRegistry


class CompletionAgent(ABC):
    """A configured model: instructions, optional tools, sampling settings."""

    @abstractmethod
    async def prompt(self, text: str, max_turns: int = 1) -> str:
        """
        Send one user message and return the final text reply.

        ``max_turns`` bounds the number of tool-use rounds the model may take
        before it must answer in text.
        """


class CompletionProvider(ABC):
    """Factory for completion agents."""

    @abstractmethod
    def agent(
        self,
        model: str,
        instructions: str,
        tools: Optional[ToolRegistry] = None,
        temperature: Optional[float] = None,
    ) -> CompletionAgent:
        """Build an agent bound to ``model`` with the given system instructions."""
