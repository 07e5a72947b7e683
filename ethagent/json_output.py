"""
Sanitize model output into strict JSON.

Models asked for "only JSON" still like to wrap it in a Markdown fence. Both
the planner and the evaluator go through this single helper:

- no fence marker: the whole reply (stripped) is the payload;
- one or more fenced blocks: only the FIRST block's body is the payload,
  the info string after the opening fence (``json``, ``JSON``...) is dropped,
  and every later block is ignored;
- an opening fence without a closing one: everything after it.
"""

from __future__ import annotations

import json
import re
from typing import Any

FENCE = "```"

# An info string ends at the end of the fence line or right before the JSON body.
_INFO_STRING_RE = re.compile(r"[A-Za-z][^\s`{\[]*[ \t]*(?:\r?\n|(?=[{\[]))")


def extract_json_payload(text: str) -> str:
    """Return the JSON candidate contained in a model reply."""
    start = text.find(FENCE)
    if start == -1:
        return text.strip()

    body_start = start + len(FENCE)
    closing = text.find(FENCE, body_start)
    info = _INFO_STRING_RE.match(text, body_start)
    if info is not None and (closing == -1 or info.end() <= closing):
        body_start = info.end()

    if closing == -1:
        return text[body_start:].strip()
    return text[body_start:closing].strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """Extract and decode a JSON object from a model reply.

    Raises ValueError (``json.JSONDecodeError`` is a subclass) when the payload
    is not valid JSON or is not an object.
    """
    payload = extract_json_payload(text)
    parsed = json.loads(payload)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed
