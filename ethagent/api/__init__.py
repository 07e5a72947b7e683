"""Completion backends behind a vendor-neutral interface."""
from ethagent.api.provider import CompletionAgent, CompletionProvider

__all__ = ["CompletionAgent", "CompletionProvider"]
