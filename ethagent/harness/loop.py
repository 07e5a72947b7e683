"""
The Agentic Loop: the bounded tool-use loop behind every profile invocation.

    for turn in range(max_turns):
        response = claude.think(instructions, messages, tools)
        if response.stop_reason == "end_turn":
            return text
        messages += [response, execute(response.tool_calls)]
    return claude.think(instructions + wrap_up, messages, tool_choice="none")

A profile's turn budget counts tool rounds. Once it is spent, one final call
is made with tool use disabled so the model has to answer from what it has
gathered. Tool-level problems the model can correct come back to it as error
tool results; infrastructure failures raised by the executor end the loop.
"""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any, Optional

import structlog

from ethagent.tools.executor import ToolExecutor

if TYPE_CHECKING:
    from ethagent.api.claude import ClaudeEngine

logger = structlog.get_logger(__name__)

_WRAP_UP_NUDGE = (
    "\n\nYou have used all of your tool calls for this request. Answer now "
    "using only the tool results you already have."
)


class AgenticLoop:
    """Drives think -> tools -> think until a text answer or the turn budget."""

    def __init__(
        self,
        engine: "ClaudeEngine",
        executor: ToolExecutor,
        max_turns: int = 1,
    ):
        self._engine = engine
        self._executor = executor
        self._max_turns = max(1, max_turns)

        self._total_runs = 0
        self._total_tool_calls = 0

    async def run(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_turns: Optional[int] = None,
    ) -> "LoopResult":
        """
        Run the loop to completion.

        Returns a LoopResult with the final text, the tool calls made and the
        full message history. Provider errors and executor-raised tool errors
        propagate unchanged.
        """
        effective_max = max(1, max_turns) if max_turns is not None else self._max_turns
        self._total_runs += 1
        start_time = time.monotonic()
        all_tool_calls: list[dict[str, Any]] = []
        loop_messages = list(messages)
        final_text = ""
        truncated = False
        turns = 0

        logger.info(
            "agentic_loop.starting",
            message_count=len(loop_messages),
            tool_count=len(tools) if tools else 0,
            max_turns=effective_max,
        )

        while True:
            response = await self._engine.think(
                system_prompt=system_prompt,
                messages=loop_messages,
                tools=tools,
                model=model,
                temperature=temperature,
            )
            tool_calls = self._engine.extract_tool_calls(response)
            loop_messages.append({"role": "assistant", "content": response.content})

            if response.stop_reason == "end_turn" or not tool_calls:
                final_text = self._engine.extract_text(response)
                break

            result_content = []
            for call in tool_calls:
                self._total_tool_calls += 1
                all_tool_calls.append(call)
                result = await self._executor.execute(
                    tool_use_id=call["id"],
                    tool_name=call["name"],
                    tool_input=call["input"],
                )
                logger.debug(
                    "agentic_loop.tool_executed",
                    tool=call["name"],
                    success=result.success,
                    turn=turns + 1,
                )
                result_content.append({
                    "type": "tool_result",
                    "tool_use_id": result.tool_use_id,
                    "content": (
                        self._serialize_tool_result_content(result.result)
                        if result.success
                        else f"Error: {result.error}"
                    ),
                    "is_error": not result.success,
                })
            loop_messages.append({"role": "user", "content": result_content})
            turns += 1

            if turns >= effective_max:
                truncated = True
                logger.info(
                    "agentic_loop.turn_budget_spent",
                    max_turns=effective_max,
                    tool_calls=len(all_tool_calls),
                )
                wrap_response = await self._engine.think(
                    system_prompt=system_prompt + _WRAP_UP_NUDGE,
                    messages=loop_messages,
                    tools=tools,
                    tool_choice={"type": "none"},
                    model=model,
                    temperature=temperature,
                )
                loop_messages.append({"role": "assistant", "content": wrap_response.content})
                final_text = self._engine.extract_text(wrap_response)
                break

        elapsed = time.monotonic() - start_time
        logger.info(
            "agentic_loop.complete",
            turns=turns,
            tool_calls=len(all_tool_calls),
            response_length=len(final_text),
        )
        return LoopResult(
            text=final_text,
            tool_calls=all_tool_calls,
            turns=turns,
            elapsed_seconds=elapsed,
            messages=loop_messages,
            was_truncated=truncated,
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_runs": self._total_runs,
            "total_tool_calls": self._total_tool_calls,
        }

    @staticmethod
    def _serialize_tool_result_content(result: Any) -> str:
        """Serialize tool output for the tool_result content field."""
        if isinstance(result, str):
            return result
        if isinstance(result, (dict, list, tuple, int, float, bool)) or result is None:
            try:
                return json.dumps(result, ensure_ascii=True, separators=(",", ":"), default=str)
            except (TypeError, ValueError):
                pass
        return str(result)


class LoopResult:
    """Final text plus everything that happened on the way to it."""

    def __init__(
        self,
        text: str,
        tool_calls: Optional[list[dict[str, Any]]] = None,
        turns: int = 0,
        elapsed_seconds: float = 0.0,
        messages: Optional[list[dict[str, Any]]] = None,
        was_truncated: bool = False,
    ):
        self.text = text
        self.tool_calls = tool_calls or []
        self.turns = turns
        self.elapsed_seconds = elapsed_seconds
        self.messages = messages or []
        self.was_truncated = was_truncated
