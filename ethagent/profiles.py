"""
Capability Profiles: the specialized agents a plan step can be routed to.

A profile is instructions + a tool category + a turn budget. The planner names
profiles by ``name`` in each step; the dispatcher looks them up here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ethagent.config import AgentConfig
from ethagent.tools.bridge import LEDGER_CATEGORY, SEARCH_CATEGORY

LEDGER_PROFILE = "ethereum_agent"
SEARCH_PROFILE = "search_agent"

# Funded accounts of the local development chain.
KNOWN_ADDRESSES: dict[str, str] = {
    "Alice": "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266",
    "Bob": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
}


def address_book() -> str:
    return "\n".join(f"{name}: {address}" for name, address in KNOWN_ADDRESSES.items())


LEDGER_INSTRUCTIONS = f"""\
You are a helpful assistant that carries out Ethereum tasks on a local network.

Tools:
- send_transaction: Send a transaction to the Ethereum network (value in wei, as a decimal string)
- balance: Get the balance of an Ethereum address
- validate_address: Validate an Ethereum address
- get_contract_code: Get the contract code of an Ethereum address

Known addresses:
{address_book()}

Report the outcome of the tool calls plainly, including amounts and transaction hashes.
"""

SEARCH_INSTRUCTIONS = """\
You are a helpful assistant that can search the web for information.

Tools:
- web_search: Search the web for information

Answer with the facts you found and name where they came from.
"""


@dataclass(frozen=True)
class CapabilityProfile:
    name: str
    description: str
    instructions: str
    tool_category: str
    max_turns: int = 1
    temperature: Optional[float] = None


def default_profiles(config: AgentConfig, temperature: Optional[float] = 0.7) -> dict[str, CapabilityProfile]:
    """The ledger and search profiles, keyed by the name the planner uses."""
    profiles = [
        CapabilityProfile(
            name=LEDGER_PROFILE,
            description="ethereum agent",
            instructions=LEDGER_INSTRUCTIONS,
            tool_category=LEDGER_CATEGORY,
            max_turns=config.ledger_max_turns,
            temperature=temperature,
        ),
        CapabilityProfile(
            name=SEARCH_PROFILE,
            description="search agent",
            instructions=SEARCH_INSTRUCTIONS,
            tool_category=SEARCH_CATEGORY,
            max_turns=config.search_max_turns,
            temperature=temperature,
        ),
    ]
    return {profile.name: profile for profile in profiles}
