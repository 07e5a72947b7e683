"""
Orchestration: planning, step dispatch, evaluation and the replan loop.

The controller (EthAgent) drives the planner and the dispatcher; the
dispatcher routes steps to capability profiles and asks the evaluator to
score each result.
"""

from __future__ import annotations

from ethagent.orchestration.controller import EthAgent
from ethagent.orchestration.dispatcher import Dispatcher
from ethagent.orchestration.evaluator import Evaluator
from ethagent.orchestration.planner import Planner

__all__ = ["EthAgent", "Dispatcher", "Evaluator", "Planner"]
