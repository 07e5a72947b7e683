"""
A minimal stdio MCP Tool Server used by the session and bridge tests.

Launched with ``sys.executable fake_tool_server.py [--framing F] [--mode M] [--log PATH]``.
It answers initialize / tools/list / tools/call the way the real Foundry tool
server does: every tool result is a single text block holding a JSON object
with a ``success`` flag.

Modes:
    normal          well-behaved server
    no-tools        initialize result without the tools capability
    exit-on-call    exits as soon as a tools/call arrives
    garbage         answers tools/call with a non-JSON line
    rpc-error       answers tools/call with a JSON-RPC error object
    slow            waits 5 seconds before answering tools/call
    ping-collide    sends a ping request with the id of the pending tools/call first
"""

from __future__ import annotations

import argparse
import json
import re
import sys
import time

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

TOOLS = [
    {"name": "validate_address", "description": "Validate an Ethereum address",
     "inputSchema": {"type": "object", "properties": {"address": {"type": "string"}}}},
    {"name": "balance", "description": "Check the balance of an Ethereum address",
     "inputSchema": {"type": "object", "properties": {"address": {"type": "string"}}}},
    {"name": "get_contract_code", "description": "Get the contract code of an Ethereum address",
     "inputSchema": {"type": "object", "properties": {"address": {"type": "string"}}}},
    {"name": "send_transaction", "description": "Send an Ethereum transaction",
     "inputSchema": {"type": "object", "properties": {"from": {"type": "string"}}}},
]


def read_message(framing):
    stdin = sys.stdin.buffer
    if framing == "ndjson":
        while True:
            line = stdin.readline()
            if not line:
                return None
            if line.strip():
                return json.loads(line)

    length = None
    while True:
        line = stdin.readline()
        if not line:
            return None
        if line in (b"\r\n", b"\n"):
            if length is not None:
                break
            continue
        key, _, value = line.decode().partition(":")
        if key.strip().lower() == "content-length":
            length = int(value.strip())
    return json.loads(stdin.read(length))


def write_raw(data):
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()


def write_message(payload, framing):
    raw = json.dumps(payload).encode()
    if framing == "ndjson":
        write_raw(raw + b"\n")
    else:
        write_raw(f"Content-Length: {len(raw)}\r\n\r\n".encode() + raw)


def tool_payload(name, arguments):
    address = arguments.get("address", "")
    if name in ("validate_address", "balance", "get_contract_code"):
        if not ADDRESS_RE.match(address):
            return {"success": False, "error": f"Invalid address: {address}"}
        if name == "validate_address":
            return {"success": True, "address": address.lower(), "is_valid": True}
        if name == "balance":
            return {"success": True, "address": address, "balance": "10000000000000000000000"}
        return {"success": True, "address": address, "code": "0x"}
    if name == "send_transaction":
        return {
            "success": True,
            "transaction_hash": "0x" + "ab" * 32,
            "from": arguments.get("from"),
            "to": arguments.get("to"),
            "value": arguments.get("value"),
        }
    return None


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--framing", default="ndjson")
    parser.add_argument("--mode", default="normal")
    parser.add_argument("--log", default=None)
    opts = parser.parse_args()

    sys.stderr.write("fake tool server ready\n")
    sys.stderr.flush()

    while True:
        message = read_message(opts.framing)
        if message is None:
            return 0
        request_id = message.get("id")
        method = message.get("method")
        if request_id is None:
            continue

        if method == "initialize":
            capabilities = {} if opts.mode == "no-tools" else {"tools": {}}
            write_message({"jsonrpc": "2.0", "id": request_id, "result": {
                "protocolVersion": "2024-11-05",
                "capabilities": capabilities,
                "serverInfo": {"name": "fake-foundry", "version": "0.0.1"},
            }}, opts.framing)
            continue

        if method == "tools/list":
            write_message({"jsonrpc": "2.0", "id": request_id, "result": {"tools": TOOLS}}, opts.framing)
            continue

        if method == "tools/call":
            params = message.get("params", {})
            name = params.get("name")
            if opts.log:
                with open(opts.log, "a") as fh:
                    fh.write(json.dumps(params) + "\n")
            if opts.mode == "exit-on-call":
                return 3
            if opts.mode == "garbage":
                write_raw(b"this is not json\n")
                continue
            if opts.mode == "rpc-error":
                write_message({"jsonrpc": "2.0", "id": request_id, "error": {
                    "code": -32602, "message": "bad params",
                }}, opts.framing)
                continue
            if opts.mode == "slow":
                time.sleep(5)
            if opts.mode == "ping-collide":
                # A server request reusing the id of the pending client request.
                write_message({"jsonrpc": "2.0", "id": request_id, "method": "ping"}, opts.framing)
                pong = read_message(opts.framing)
                if opts.log:
                    with open(opts.log, "a") as fh:
                        fh.write(json.dumps({"pong": pong}) + "\n")

            # Servers may interleave notifications; the client must skip them.
            write_message({"jsonrpc": "2.0", "method": "notifications/message",
                           "params": {"level": "info", "data": f"calling {name}"}}, opts.framing)
            payload = tool_payload(name, params.get("arguments", {}))
            if payload is None:
                write_message({"jsonrpc": "2.0", "id": request_id, "error": {
                    "code": -32601, "message": f"Unknown tool: {name}",
                }}, opts.framing)
                continue
            write_message({"jsonrpc": "2.0", "id": request_id, "result": {
                "content": [{"type": "text", "text": json.dumps(payload)}],
                "isError": False,
            }}, opts.framing)
            continue

        write_message({"jsonrpc": "2.0", "id": request_id, "error": {
            "code": -32601, "message": f"Method not found: {method}",
        }}, opts.framing)


if __name__ == "__main__":
    sys.exit(main())
