"""
Tool Server Session: the one long-lived connection to the external Tool Server.

The Tool Server is an MCP server spoken to over its standard streams:
- JSON-RPC 2.0 frames on stdin/stdout (newline-delimited by default,
  ``Content-Length`` headers optionally)
- stderr is drained into debug logs and never parsed
- ``initialize`` handshake before any call, ``tools/list`` as liveness probe

A single actor task owns the process streams. Callers enqueue a request with a
future and await it; the actor sends one request, reads until the reply with
the matching id arrives, resolves the future and only then takes the next
request. Exactly one tool call is in flight system-wide, and a caller that
stops waiting (step deadline) never leaves the stream misaligned: the actor
still consumes the reply and drops it.
"""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from ethagent import __version__
from ethagent.config import ToolServerConfig
from ethagent.errors import (
    EthAgentError,
    ToolCallError,
    ToolSerializationError,
    ToolServerStartError,
    TransportError,
)

logger = structlog.get_logger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "eth-agent"

# Contract bytecode replies easily exceed asyncio's 64 KiB line default.
_STREAM_LIMIT = 16 * 1024 * 1024


def _extract_jsonrpc_result(response: Any) -> Any:
    """Extract result payload from a JSON-RPC response."""

    if not isinstance(response, dict):
        raise ToolSerializationError(
            f"Invalid JSON-RPC response type: {type(response).__name__}"
        )

    if "error" in response and response["error"] is not None:
        error_obj = response.get("error", {})
        if isinstance(error_obj, dict):
            code = error_obj.get("code", "unknown")
            message = error_obj.get("message", "Unknown tool server error")
            raise ToolCallError(f"Tool server error {code}: {message}", code=code)
        raise ToolCallError(f"Tool server error: {error_obj}")

    return response.get("result")


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


class _Framer(ABC):
    @abstractmethod
    def encode(self, payload: dict[str, Any]) -> bytes:
        ...

    @abstractmethod
    async def read(self, stream: asyncio.StreamReader, server: str) -> dict[str, Any]:
        ...

    @staticmethod
    def _decode(raw: bytes, server: str) -> dict[str, Any]:
        try:
            parsed = json.loads(raw.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as exc:
            raise ToolSerializationError(
                f"Tool server '{server}' sent undecodable JSON: {exc}"
            ) from exc
        if not isinstance(parsed, dict):
            raise ToolSerializationError(
                f"Tool server '{server}' returned non-object JSON payload."
            )
        return parsed


class _NdjsonFramer(_Framer):
    """One JSON object per line (the MCP stdio transport)."""

    def encode(self, payload: dict[str, Any]) -> bytes:
        return json.dumps(payload, ensure_ascii=False).encode("utf-8") + b"\n"

    async def read(self, stream: asyncio.StreamReader, server: str) -> dict[str, Any]:
        while True:
            line = await stream.readline()
            if not line:
                raise TransportError(f"Tool server '{server}' closed unexpectedly.")
            if not line.strip():
                continue
            return self._decode(line, server)


class _ContentLengthFramer(_Framer):
    """LSP-style ``Content-Length`` headers followed by the JSON body."""

    def encode(self, payload: dict[str, Any]) -> bytes:
        raw = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        header = f"Content-Length: {len(raw)}\r\n\r\n".encode("ascii")
        return header + raw

    async def read(self, stream: asyncio.StreamReader, server: str) -> dict[str, Any]:
        headers: dict[str, str] = {}
        while True:
            line = await stream.readline()
            if not line:
                raise TransportError(f"Tool server '{server}' closed unexpectedly.")
            if line in (b"\n", b"\r\n"):
                if headers:
                    break
                continue
            decoded = line.decode("utf-8", errors="replace").strip()
            if ":" not in decoded:
                continue
            key, value = decoded.split(":", 1)
            headers[key.strip().lower()] = value.strip()

        content_length = headers.get("content-length")
        if not content_length:
            raise ToolSerializationError(f"Tool server '{server}' missing Content-Length header.")
        try:
            length = int(content_length)
        except ValueError as exc:
            raise ToolSerializationError(
                f"Tool server '{server}' returned invalid Content-Length: {content_length}"
            ) from exc

        try:
            payload = await stream.readexactly(length)
        except asyncio.IncompleteReadError as exc:
            raise TransportError(f"Tool server '{server}' closed mid-frame.") from exc
        return self._decode(payload, server)


_FRAMERS: dict[str, type[_Framer]] = {
    "ndjson": _NdjsonFramer,
    "content-length": _ContentLengthFramer,
}


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@dataclass
class _PendingRequest:
    method: str
    params: Optional[dict[str, Any]]
    future: asyncio.Future
    expects_reply: bool = True


class ToolServerSession:
    """
    Owns the Tool Server process and serves correlated requests to it.

    Lifecycle:
    1. start()       - spawn the process, start the actor, handshake
    2. call_tool()   - tools/call round-trips (serialized by the actor)
    3. is_alive()    - tools/list round-trip used as a liveness probe
    4. shutdown()    - close stdin, wait for exit, terminate/kill if needed
    """

    def __init__(self, config: ToolServerConfig, env: Optional[dict[str, str]] = None):
        self._config = config
        self._env = dict(env or {})
        self._framer = _FRAMERS[config.framing]()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._queue: asyncio.Queue[Optional[_PendingRequest]] = asyncio.Queue()
        self._actor_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._request_id = 0
        self._broken = False
        self._closed = False
        self._server_info: dict[str, Any] = {}
        self._total_requests = 0

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def timeout_seconds(self) -> float:
        return self._config.timeout_seconds

    @property
    def server_info(self) -> dict[str, Any]:
        return dict(self._server_info)

    @property
    def running(self) -> bool:
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._broken
            and not self._closed
        )

    async def __aenter__(self) -> "ToolServerSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # -- startup ------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the Tool Server and complete the MCP handshake."""
        if self._process is not None:
            raise ToolServerStartError(f"Tool server '{self.name}' session already started.")

        command = self._config.command
        args = self._config.get_args()
        env = os.environ.copy()
        env.update({str(k): str(v) for k, v in self._env.items()})

        logger.info("tool_server.starting", server=self.name, command=command, args=args)
        try:
            self._process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            self._closed = True
            logger.error("tool_server.spawn_failed", server=self.name, command=command, error=str(exc))
            raise ToolServerStartError(
                f"Failed to start tool server '{self.name}' from '{command}': {exc}"
            ) from exc

        self._actor_task = asyncio.create_task(self._serve())
        if self._process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr())

        try:
            await self._handshake()
        except EthAgentError as exc:
            await self.shutdown()
            if isinstance(exc, ToolServerStartError):
                raise
            raise ToolServerStartError(
                f"Tool server '{self.name}' failed the initialize handshake: {exc}"
            ) from exc

        logger.info(
            "tool_server.connected",
            server=self.name,
            pid=self._process.pid,
            server_info=self._server_info,
        )

    async def _handshake(self) -> None:
        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": CLIENT_NAME, "version": __version__},
        }
        result = await self.request("initialize", params)
        if not isinstance(result, dict) or "protocolVersion" not in result:
            raise ToolServerStartError(
                f"Tool server '{self.name}' returned an invalid initialize result: {result!r}"
            )
        capabilities = result.get("capabilities")
        if not isinstance(capabilities, dict) or "tools" not in capabilities:
            raise ToolServerStartError(
                f"Tool server '{self.name}' does not advertise the tools capability."
            )
        server_info = result.get("serverInfo")
        self._server_info = server_info if isinstance(server_info, dict) else {}
        self._server_info["protocolVersion"] = result["protocolVersion"]
        await self.notify("notifications/initialized", {})

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        try:
            while True:
                line = await self._process.stderr.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if text:
                    logger.debug("tool_server.stderr", server=self.name, message=text[:500])
        except Exception as exc:  # pragma: no cover
            logger.debug("tool_server.stderr_drain_failed", server=self.name, error=str(exc))

    # -- actor --------------------------------------------------------------

    async def _serve(self) -> None:
        """Process queued requests one at a time until shutdown or breakage."""
        pending: Optional[_PendingRequest] = None
        try:
            while True:
                pending = await self._queue.get()
                if pending is None:
                    break
                if pending.future.done():
                    # Caller gave up before the request hit the wire.
                    continue
                try:
                    result = await self._roundtrip(pending)
                except EthAgentError as exc:
                    if not pending.future.done():
                        pending.future.set_exception(exc)
                    if self._broken:
                        break
                    continue
                if not pending.future.done():
                    pending.future.set_result(result)
        finally:
            closed = TransportError(f"Tool server '{self.name}' session is closed.")
            if pending is not None and not pending.future.done():
                pending.future.set_exception(closed)
            self._fail_queued(closed)

    async def _roundtrip(self, pending: _PendingRequest) -> Any:
        assert self._process is not None
        stdin = self._process.stdin
        stdout = self._process.stdout
        assert stdin is not None and stdout is not None

        payload: dict[str, Any] = {"jsonrpc": "2.0", "method": pending.method}
        request_id: Optional[int] = None
        if pending.expects_reply:
            self._request_id += 1
            request_id = self._request_id
            payload["id"] = request_id
        if pending.params is not None:
            payload["params"] = pending.params

        self._total_requests += 1
        logger.debug("tool_server.request", server=self.name, method=pending.method, id=request_id)
        try:
            stdin.write(self._framer.encode(payload))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._broken = True
            raise TransportError(
                f"Tool server '{self.name}' is not accepting requests: {exc}"
            ) from exc

        if not pending.expects_reply:
            return None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.timeout_seconds
        while True:
            remaining = deadline - loop.time()
            try:
                message = await asyncio.wait_for(
                    self._framer.read(stdout, self.name),
                    timeout=max(0.01, remaining),
                )
            except asyncio.TimeoutError as exc:
                # The reply may still arrive later; the stream cannot be trusted.
                self._broken = True
                raise TransportError(
                    f"Tool server request '{pending.method}' timed out after "
                    f"{self._config.timeout_seconds}s on server '{self.name}'."
                ) from exc
            except EthAgentError:
                self._broken = True
                raise

            if "method" in message:
                # Server-to-client traffic; requests have their own id space.
                if message.get("id") is not None:
                    await self._answer_server_request(stdin, message)
                continue
            if message.get("id") != request_id:
                logger.debug(
                    "tool_server.unexpected_message",
                    server=self.name,
                    expected_id=request_id,
                    received_id=message.get("id"),
                    method=message.get("method"),
                )
                continue
            return _extract_jsonrpc_result(message)

    async def _answer_server_request(self, stdin: asyncio.StreamWriter, message: dict[str, Any]) -> None:
        method = message.get("method")
        reply: dict[str, Any] = {"jsonrpc": "2.0", "id": message["id"]}
        if method == "ping":
            reply["result"] = {}
        else:
            reply["error"] = {"code": -32601, "message": f"Method not found: {method}"}
        logger.debug("tool_server.server_request", server=self.name, method=method, id=message["id"])
        try:
            stdin.write(self._framer.encode(reply))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._broken = True
            raise TransportError(
                f"Tool server '{self.name}' is not accepting requests: {exc}"
            ) from exc

    def _fail_queued(self, error: EthAgentError) -> None:
        while True:
            try:
                pending = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            if pending is not None and not pending.future.done():
                pending.future.set_exception(error)

    def _ensure_usable(self) -> None:
        if self._process is None:
            raise TransportError(f"Tool server '{self.name}' session was never started.")
        if self._closed:
            raise TransportError(f"Tool server '{self.name}' session is closed.")
        if self._broken:
            raise TransportError(
                f"Tool server '{self.name}' stream is broken (a previous request failed). "
                "Restart the session."
            )
        if self._process.returncode is not None:
            raise TransportError(
                f"Tool server '{self.name}' exited with code {self._process.returncode}."
            )
        if self._actor_task is None or self._actor_task.done():
            raise TransportError(f"Tool server '{self.name}' session actor is not running.")

    # -- public API ---------------------------------------------------------

    async def request(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Send a request through the actor and wait for its correlated reply."""
        self._ensure_usable()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put(_PendingRequest(method=method, params=params, future=future))
        return await future

    async def notify(self, method: str, params: Optional[dict[str, Any]] = None) -> None:
        self._ensure_usable()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put(
            _PendingRequest(method=method, params=params, future=future, expects_reply=False)
        )
        await future

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self.request("tools/list", {})
        if isinstance(result, dict):
            tools = result.get("tools", [])
        else:
            tools = result
        if not isinstance(tools, list):
            raise ToolSerializationError(
                f"Tool server '{self.name}' returned a malformed tools/list result."
            )
        return [tool for tool in tools if isinstance(tool, dict)]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        logger.info("tool_server.call_tool", server=self.name, tool=name)
        result = await self.request("tools/call", {"name": name, "arguments": arguments})
        if not isinstance(result, dict):
            raise ToolSerializationError(
                f"Tool server '{self.name}' returned a malformed tools/call result for '{name}'."
            )
        return result

    async def is_alive(self) -> bool:
        """Liveness probe: a tools/list round-trip."""
        if not self.running:
            return False
        try:
            await self.list_tools()
        except EthAgentError as exc:
            logger.warning("tool_server.liveness_failed", server=self.name, error=str(exc))
            return False
        return True

    async def shutdown(self) -> None:
        """Close stdin (graceful end of session), then wait, terminate, kill."""
        if self._closed and self._actor_task is None:
            return
        self._closed = True

        if self._actor_task is not None:
            self._actor_task.cancel()
            try:
                await self._actor_task
            except asyncio.CancelledError:
                pass
            self._actor_task = None
        self._fail_queued(TransportError(f"Tool server '{self.name}' session is closed."))

        process = self._process
        if process is not None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
                try:
                    await process.stdin.wait_closed()
                except (BrokenPipeError, ConnectionResetError):
                    pass
            if process.returncode is None:
                try:
                    await asyncio.wait_for(process.wait(), timeout=2.0)
                except asyncio.TimeoutError:
                    process.terminate()
                    try:
                        await asyncio.wait_for(process.wait(), timeout=2.0)
                    except asyncio.TimeoutError:
                        process.kill()
                        await process.wait()

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None

        logger.info(
            "tool_server.shutdown",
            server=self.name,
            returncode=process.returncode if process is not None else None,
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "server": self.name,
            "running": self.running,
            "total_requests": self._total_requests,
            "broken": self._broken,
        }
