"""
Tool Executor: the boundary between "Claude asked for a tool" and "the tool ran".

The executor enforces:
1. LOOKUP: the tool must exist, be enabled and have a handler
2. INPUT VALIDATION: required fields and basic JSON types, before any I/O
3. TIMEOUT PROTECTION: no tool can run forever
4. ERROR CLASSIFICATION: problems the model can fix (bad input, rejected
   arguments) come back as error tool results; infrastructure failures
   (transport, serialization, search outage) propagate and end the step
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Optional

import structlog

from ethagent.errors import CapabilityInvocationError, ToolArgumentError
from ethagent.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)


class ToolExecutionResult:
    """
    The result of executing a tool: success or a model-visible failure.

    Gets converted into the tool_result block sent back to Claude.
    """
    def __init__(
        self,
        tool_use_id: str,
        tool_name: str,
        success: bool,
        result: Any = None,
        error: Optional[str] = None,
        execution_time: float = 0.0,
    ):
        self.tool_use_id = tool_use_id
        self.tool_name = tool_name
        self.success = success
        self.result = result
        self.error = error
        self.execution_time = execution_time


# JSON Schema type -> Python types (for lightweight validation)
_JSON_TYPE_MAP: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _validate_tool_input(
    schema: dict[str, Any],
    tool_input: dict[str, Any],
) -> Optional[str]:
    """
    Lightweight JSON Schema validation for tool inputs.

    Checks required fields and basic type constraints. Returns an error
    message string on failure, or None if the input is valid.
    """
    required = schema.get("required", [])
    properties = schema.get("properties", {})

    missing = [name for name in required if name not in tool_input]
    if missing:
        return f"Missing required parameter(s): {', '.join(missing)}"

    for name, value in tool_input.items():
        prop_schema = properties.get(name)
        if not prop_schema or not isinstance(prop_schema, dict):
            continue
        expected_type = prop_schema.get("type")
        py_types = _JSON_TYPE_MAP.get(expected_type) if expected_type else None
        if py_types is None:
            continue
        # In Python bool is a subclass of int, but JSON booleans are distinct
        if isinstance(value, bool) and expected_type in ("integer", "number"):
            return f"Parameter '{name}' expected {expected_type}, got boolean"
        if value is not None and not isinstance(value, py_types):
            return f"Parameter '{name}' expected {expected_type}, got {type(value).__name__}"

    return None


class ToolExecutor:
    """Executes tool calls from a registry with validation and timeouts."""

    def __init__(
        self,
        registry: ToolRegistry,
        default_timeout: float = 30.0,
        max_output_length: int = 25000,
    ):
        self._registry = registry
        self._default_timeout = default_timeout
        self._max_output_length = max_output_length

        self._total_executions = 0
        self._total_successes = 0
        self._total_failures = 0

    def _failure(self, tool_use_id: str, tool_name: str, error: str, elapsed: float = 0.0) -> ToolExecutionResult:
        self._total_failures += 1
        return ToolExecutionResult(
            tool_use_id=tool_use_id,
            tool_name=tool_name,
            success=False,
            error=error,
            execution_time=elapsed,
        )

    async def execute(
        self,
        tool_use_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
    ) -> ToolExecutionResult:
        """
        Execute a tool call from Claude.

        Returns a ToolExecutionResult for outcomes the model should see.
        Raises ToolBridgeError subclasses (other than ToolArgumentError) and
        CapabilityInvocationError on timeout: those end the step.
        """
        start_time = time.monotonic()
        self._total_executions += 1

        logger.info(
            "tool_executor.executing",
            tool_name=tool_name,
            tool_use_id=tool_use_id,
            input_keys=list(tool_input.keys()),
        )

        tool_def = self._registry.get(tool_name)
        if not tool_def:
            return self._failure(tool_use_id, tool_name, f"Unknown tool: {tool_name}")
        if not tool_def.enabled:
            return self._failure(tool_use_id, tool_name, f"Tool '{tool_name}' is currently disabled.")
        handler = tool_def.handler
        if not handler:
            return self._failure(tool_use_id, tool_name, f"No handler registered for tool: {tool_name}")

        validation_error = _validate_tool_input(tool_def.input_schema, tool_input)
        if validation_error:
            return self._failure(tool_use_id, tool_name, validation_error)

        timeout = tool_def.timeout if tool_def.timeout is not None else self._default_timeout
        try:
            outcome = handler(**tool_input)
            if inspect.isawaitable(outcome):
                result = await asyncio.wait_for(outcome, timeout=timeout)
            else:
                result = outcome
        except ToolArgumentError as e:
            elapsed = time.monotonic() - start_time
            logger.warning("tool_executor.arguments_rejected", tool_name=tool_name, error=str(e))
            return self._failure(tool_use_id, tool_name, f"Invalid arguments: {e}", elapsed)
        except asyncio.TimeoutError as e:
            self._total_failures += 1
            logger.warning("tool_executor.timeout", tool_name=tool_name, timeout=timeout)
            raise CapabilityInvocationError(
                f"Tool '{tool_name}' timed out after {timeout}s",
                context={"tool_name": tool_name},
            ) from e
        except Exception as e:
            self._total_failures += 1
            logger.error(
                "tool_executor.error",
                tool_name=tool_name,
                error=f"{type(e).__name__}: {e}",
            )
            raise

        result = self._truncate(result)
        elapsed = time.monotonic() - start_time
        self._total_successes += 1
        logger.info(
            "tool_executor.success",
            tool_name=tool_name,
            elapsed=round(elapsed, 2),
            result_length=len(str(result)),
        )
        return ToolExecutionResult(
            tool_use_id=tool_use_id,
            tool_name=tool_name,
            success=True,
            result=result,
            execution_time=elapsed,
        )

    def _truncate(self, result: Any) -> Any:
        result_str = str(result)
        if len(result_str) <= self._max_output_length:
            return result
        return (
            result_str[: self._max_output_length - 100]
            + f"\n\n[Output truncated: {len(result_str)} chars total, "
            f"showing first {self._max_output_length - 100}]"
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_executions": self._total_executions,
            "successes": self._total_successes,
            "failures": self._total_failures,
            "success_rate": self._total_successes / max(1, self._total_executions),
        }
