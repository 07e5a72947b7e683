"""
Tool Bridge: typed tool operations for the capability profiles.

Ledger operations are forwarded to the Tool Server session; ``web_search`` is
an authenticated GET against the Brave Search API. Arguments are validated with
Pydantic before anything leaves the process: a rejected argument raises
``ToolArgumentError`` and no request is sent.

The Tool Server answers every ledger call with a JSON object in a single text
block (``{"success": ..., ...}``). Domain failures such as a malformed address
arrive as ``success: false`` and are returned as data, never raised.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ethagent.config import SearchConfig, ToolServerConfig
from ethagent.errors import SearchError, ToolArgumentError, TransportError
from ethagent.tools.mcp import ToolServerSession
from ethagent.tools.registry import ToolDefinition, ToolRegistry

logger = structlog.get_logger(__name__)

LEDGER_CATEGORY = "ledger"
SEARCH_CATEGORY = "search"

# Executor timeouts sit above the session and HTTP timeouts.
TOOL_TIMEOUT_MARGIN = 5.0


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------


class AddressArgs(BaseModel):
    # Format is the Tool Server's call (validate_address); only emptiness is ours.
    address: str = Field(min_length=1)


class SendTransactionArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    value: str = Field(pattern=r"^\d+$")
    data: Optional[str] = Field(None, pattern=r"^(0x)?[0-9a-fA-F]*$")
    gas_limit: Optional[int] = Field(None, ge=0)
    gas_price: Optional[int] = Field(None, ge=0)

    def to_arguments(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class WebSearchArgs(BaseModel):
    query: str = Field(min_length=1)
    count: Optional[int] = Field(None, ge=1)
    country: Optional[str] = None
    search_lang: Optional[str] = None


def _validate(model: type[BaseModel], arguments: dict[str, Any]) -> Any:
    try:
        return model.model_validate(arguments)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ToolArgumentError(problems, {"model": model.__name__}) from exc


def decode_tool_reply(result: dict[str, Any]) -> Any:
    """Unwrap the Tool Server's single-text-block JSON object, else return as-is."""
    content = result.get("content")
    if not isinstance(content, list) or len(content) != 1:
        return result
    block = content[0]
    if not isinstance(block, dict) or block.get("type") != "text":
        return result
    try:
        payload = json.loads(block.get("text", ""))
    except (json.JSONDecodeError, TypeError):
        return result
    return payload if isinstance(payload, dict) else result


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


class ToolBridge:
    """Typed facade over the Tool Server session and the search provider."""

    def __init__(
        self,
        session: ToolServerSession,
        search_config: Optional[SearchConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._session = session
        self._search = search_config or SearchConfig()
        self._http = http_client
        self._owns_http = http_client is None

    @property
    def session(self) -> ToolServerSession:
        return self._session

    async def _call_ledger(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        result = await self._session.call_tool(tool_name, arguments)
        payload = decode_tool_reply(result)
        if isinstance(payload, dict) and payload.get("success") is False:
            logger.info("tool_bridge.domain_failure", tool=tool_name, payload=payload)
        return payload

    async def validate_address(self, address: str) -> Any:
        args = _validate(AddressArgs, {"address": address})
        return await self._call_ledger("validate_address", args.model_dump())

    async def balance(self, address: str) -> Any:
        args = _validate(AddressArgs, {"address": address})
        return await self._call_ledger("balance", args.model_dump())

    async def get_contract_code(self, address: str) -> Any:
        args = _validate(AddressArgs, {"address": address})
        return await self._call_ledger("get_contract_code", args.model_dump())

    async def send_transaction(
        self,
        from_: str,
        to: str,
        value: str,
        data: Optional[str] = None,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> Any:
        args = _validate(
            SendTransactionArgs,
            {
                "from": from_,
                "to": to,
                "value": value,
                "data": data,
                "gas_limit": gas_limit,
                "gas_price": gas_price,
            },
        )
        return await self._call_ledger("send_transaction", args.to_arguments())

    async def _send_transaction_tool(self, **arguments: Any) -> Any:
        # Tool input uses the wire name "from", which cannot be a Python keyword argument.
        args = _validate(SendTransactionArgs, arguments)
        return await self._call_ledger("send_transaction", args.to_arguments())

    async def web_search(
        self,
        query: str,
        count: Optional[int] = None,
        country: Optional[str] = None,
        search_lang: Optional[str] = None,
    ) -> Any:
        args = _validate(
            WebSearchArgs,
            {"query": query, "count": count, "country": country, "search_lang": search_lang},
        )
        if not self._search.is_available:
            raise SearchError("Web search is unavailable: BRAVE_SEARCH_API_KEY is not set.")

        params: dict[str, Any] = {"q": args.query}
        for key in ("count", "country", "search_lang"):
            value = getattr(args, key)
            if value is not None:
                params[key] = value
        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self._search.api_key or "",
        }

        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._search.timeout_seconds)

        logger.info("tool_bridge.web_search", query=args.query, count=args.count)
        try:
            response = await self._http.get(self._search.endpoint, params=params, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise SearchError(
                f"Search request failed with status {exc.response.status_code}",
                {"status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise SearchError(f"Search request failed: {exc}") from exc
        except ValueError as exc:
            raise SearchError(f"Search provider returned invalid JSON: {exc}") from exc

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    # -- registration -------------------------------------------------------

    def register_tools(self, registry: ToolRegistry) -> None:
        """Register the ledger and search tools with their JSON schemas."""
        ledger_timeout = self._session.timeout_seconds + TOOL_TIMEOUT_MARGIN
        search_timeout = self._search.timeout_seconds + TOOL_TIMEOUT_MARGIN
        address_schema = {
            "type": "object",
            "properties": {
                "address": {"type": "string", "description": "The Ethereum address"},
            },
            "required": ["address"],
        }

        registry.register(ToolDefinition(
            name="validate_address",
            description="Validate an Ethereum address format and checksum.",
            input_schema=address_schema,
            handler=self.validate_address,
            category=LEDGER_CATEGORY,
            timeout=ledger_timeout,
        ))
        registry.register(ToolDefinition(
            name="balance",
            description="Check the balance (in wei) of an Ethereum address.",
            input_schema=address_schema,
            handler=self.balance,
            category=LEDGER_CATEGORY,
            timeout=ledger_timeout,
        ))
        registry.register(ToolDefinition(
            name="get_contract_code",
            description="Get the deployed contract bytecode of an Ethereum address.",
            input_schema=address_schema,
            handler=self.get_contract_code,
            category=LEDGER_CATEGORY,
            timeout=ledger_timeout,
        ))
        registry.register(ToolDefinition(
            name="send_transaction",
            description="Send an Ethereum transaction with the specified parameters.",
            input_schema={
                "type": "object",
                "properties": {
                    "from": {"type": "string", "description": "Sender address"},
                    "to": {"type": "string", "description": "Recipient address"},
                    "value": {
                        "type": "string",
                        "description": "Amount to send, as a decimal string in wei",
                    },
                    "data": {"type": "string", "description": "Transaction data (hex encoded)"},
                    "gas_limit": {"type": "number", "description": "Gas limit for the transaction"},
                    "gas_price": {"type": "number", "description": "Gas price (in wei)"},
                },
                "required": ["from", "to", "value"],
            },
            handler=self._send_transaction_tool,
            category=LEDGER_CATEGORY,
            timeout=ledger_timeout,
        ))
        registry.register(ToolDefinition(
            name="web_search",
            description="Search the web for information using the Brave Search API.",
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "The query to search the web for"},
                    "count": {"type": "number", "description": "Number of results to return (default: 20)"},
                    "country": {
                        "type": "string",
                        "description": "Country code for localized results (e.g., 'us')",
                    },
                    "search_lang": {"type": "string", "description": "Search language (e.g., 'en')"},
                },
                "required": ["query"],
            },
            handler=self.web_search,
            category=SEARCH_CATEGORY,
            timeout=search_timeout,
        ))
        logger.debug("tool_bridge.tools_registered", count=5)


# ---------------------------------------------------------------------------
# Per-run session management
# ---------------------------------------------------------------------------


class ToolSessionManager:
    """
    Lazily starts one Tool Server session per run and hands out its bridge.

    An existing session is reused across replans as long as it passes the
    liveness probe; there is no automatic reconnect.
    """

    def __init__(
        self,
        tool_server_config: Optional[ToolServerConfig] = None,
        search_config: Optional[SearchConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._tool_server_config = tool_server_config or ToolServerConfig()
        self._search_config = search_config or SearchConfig()
        self._http_client = http_client
        self._bridge: Optional[ToolBridge] = None

    @property
    def active(self) -> bool:
        return self._bridge is not None

    async def acquire(self) -> ToolBridge:
        """Return the run's bridge, starting the session on first use.

        Raises ToolServerStartError when the server cannot be started and
        TransportError when the existing session fails the liveness probe.
        """
        if self._bridge is not None:
            if not await self._bridge.session.is_alive():
                raise TransportError(
                    f"Tool server '{self._bridge.session.name}' failed the liveness check."
                )
            return self._bridge

        session = ToolServerSession(self._tool_server_config)
        await session.start()
        self._bridge = ToolBridge(session, self._search_config, http_client=self._http_client)
        return self._bridge

    async def close(self) -> None:
        bridge, self._bridge = self._bridge, None
        if bridge is None:
            return
        try:
            await bridge.close()
        finally:
            await bridge.session.shutdown()
