"""Lenient JSON extraction for vision-model responses.

Vision models are asked for a bare JSON object but routinely wrap it in
markdown fences, prepend a sentence of preamble, or get cut off at the
token limit mid-string.  :func:`parse_model_json` tries, in order:

1. Strip markdown code fences (`````json ... `````).
2. Extract the outermost ``{ ... }`` when preamble text is present.
3. ``json.loads`` as-is.
4. Repair truncation: close an open string, drop a dangling comma or
   key, then close every open array/object in nesting order.

Anything still unparseable raises :class:`ParseError`.
"""

from __future__ import annotations

import json
import re
from typing import Any

from src.utils.errors import ParseError

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?")
_TRAILING_COMMA_RE = re.compile(r",\s*$")
_DANGLING_KEY_RE = re.compile(r',?\s*"[^"]*"\s*:\s*$')


def strip_fences(text: str) -> str:
    """Return the content inside a markdown code fence, or *text* unchanged."""
    stripped = text.strip()
    fence_match = _JSON_FENCE_RE.search(stripped)
    if fence_match:
        return fence_match.group(1).strip()
    # A truncated response may open a fence and never close it.
    return _OPEN_FENCE_RE.sub("", stripped).strip()


def repair_truncated_json(text: str) -> str:
    """Close unterminated strings, arrays and objects in *text*.

    Brackets are closed in reverse nesting order using a stack, so
    ``{"a": [1, {"b": "x`` becomes ``{"a": [1, {"b": "x"}]}``.
    """
    stack: list[str] = []
    in_string = False
    escaped = False

    for char in text:
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    repaired = text
    if escaped:
        repaired = repaired[:-1]
    if in_string:
        repaired += '"'
    repaired = _TRAILING_COMMA_RE.sub("", repaired.rstrip())
    repaired = _DANGLING_KEY_RE.sub("", repaired)
    repaired = _TRAILING_COMMA_RE.sub("", repaired.rstrip())
    return repaired + "".join(reversed(stack))


def parse_model_json(content: str | None, stage: str = "unknown") -> dict[str, Any]:
    """Parse a model response into a JSON object, repairing it if needed.

    Parameters
    ----------
    content:
        Raw response text from the vision model.
    stage:
        Pipeline stage name, used only for the error message.

    Returns
    -------
    dict
        The parsed JSON object.

    Raises
    ------
    ParseError
        If the content is empty, not an object, or beyond repair.
    """
    if not content or not content.strip():
        raise ParseError(message=f"Empty model response for stage '{stage}'")

    text = strip_fences(content)

    if not text.startswith("{"):
        brace_start = text.find("{")
        if brace_start == -1:
            raise ParseError(message=f"No JSON object in model response for stage '{stage}'")
        brace_end = text.rfind("}")
        text = text[brace_start : brace_end + 1] if brace_end > brace_start else text[brace_start:]

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(repair_truncated_json(text))
        except json.JSONDecodeError as exc:
            raise ParseError(
                message=f"Unrepairable JSON for stage '{stage}': {exc.msg}"
            ) from exc

    if not isinstance(parsed, dict):
        raise ParseError(message=f"Model response for stage '{stage}' is not a JSON object")
    return parsed
