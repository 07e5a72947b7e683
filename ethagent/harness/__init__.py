"""Agent harness, the runtime around each completion: tool loop and retries."""
from ethagent.harness.loop import AgenticLoop, LoopResult
from ethagent.harness.retry import RetryConfig, with_retries

__all__ = ["AgenticLoop", "LoopResult", "RetryConfig", "with_retries"]
