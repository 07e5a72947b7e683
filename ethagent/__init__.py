"""
eth-agent: Plan, Execute, Evaluate over Ethereum tools.

A user request is decomposed into a multi-step plan, each step is executed by
a capability profile (a Claude agent with a fixed tool subset), each result is
judged, and the whole plan is redrawn when a step fails in a recoverable way.

Layers (bottom to top):
    1. Tool Server session (MCP over stdio) and the Tool Bridge
    2. Completion provider (Claude) and the bounded tool-use loop
    3. Capability profiles (ledger, search)
    4. Planner, dispatcher, evaluator
    5. Replan controller (EthAgent.run)
"""

__version__ = "0.1.0"
