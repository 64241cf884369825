"""Shrink oversized tool-result payloads after a token-limit rejection.

Each tool result is cut to ``ratio`` of its serialized length. Structured
results are repaired by closing whatever brackets the cut left open and
re-parsed; anything that still fails to parse is kept as truncated text.
"""

from __future__ import annotations

import json
import math
from typing import Any

from loguru import logger

from agentsched.agent.types import Message, ModelRequest, ToolResultPart

_CLOSERS = {"[": "]", "{": "}"}


def balance_brackets(text: str) -> str:
    """Close the strings, arrays and objects left open at the end of ``text``.

    The scan is string-aware: brackets inside JSON strings are ignored.
    An object key left without a value is dropped, as is a dangling ``,``
    or ``:`` before the closers.
    """
    stack: list[str] = []
    expect_key: list[bool] = []
    key_start: list[int | None] = []  # unfinished key of each open container
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch.isspace():
            continue
        in_object = bool(stack) and stack[-1] == "}"
        if in_object and not expect_key[-1] and ch not in ",}":
            key_start[-1] = None
        if ch == '"':
            in_string = True
            if in_object and expect_key[-1]:
                key_start[-1] = i
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
            expect_key.append(ch == "{")
            key_start.append(None)
        elif ch in "]}" and stack and stack[-1] == ch:
            stack.pop()
            expect_key.pop()
            key_start.pop()
        elif ch == ":" and in_object:
            expect_key[-1] = False
        elif ch == "," and in_object:
            expect_key[-1] = True
            key_start[-1] = None

    result = text
    if key_start and key_start[-1] is not None:
        result = text[: key_start[-1]]
        in_string = False
    if in_string:
        if escaped:
            result = result[:-1]
        result += '"'
    else:
        result = result.rstrip()
        while result.endswith((",", ":")):
            result = result[:-1].rstrip()

    return result + "".join(reversed(stack))


def _shrink_content(content: Any, ratio: float) -> Any:
    if content is None:
        return None
    if isinstance(content, str):
        return content[: math.floor(len(content) * ratio)]

    serialized = json.dumps(content, ensure_ascii=False)
    truncated = serialized[: math.floor(len(serialized) * ratio)]
    try:
        return json.loads(balance_brackets(truncated))
    except json.JSONDecodeError:
        logger.debug("Shrunk tool result is not valid JSON, keeping text")
        return truncated


def shrink_tool_results(messages: list[Message], ratio: float) -> list[Message]:
    """Return copies of ``messages`` with every tool result shrunk."""
    shrunk = []
    for msg in messages:
        msg = msg.model_copy(deep=True)
        msg.content = [
            part.model_copy(update={"content": _shrink_content(part.content, ratio)})
            if isinstance(part, ToolResultPart)
            else part
            for part in msg.content
        ]
        shrunk.append(msg)
    return shrunk


def shrink_request(request: ModelRequest, ratio: float) -> ModelRequest:
    """Copy of ``request`` with tool results cut to ``ratio`` of their size."""
    return request.model_copy(
        update={"messages": shrink_tool_results(request.messages, ratio)}, deep=True
    )
