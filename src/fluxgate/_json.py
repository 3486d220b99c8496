"""Forgiving JSON parsing for tool-call argument buffers.

Vendors stream argument text in fragments and some of them decorate or
truncate it. ``parse_arguments`` always returns a mapping and never raises.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

log = logging.getLogger(__name__)

# Control markers some OpenAI-compatible vendors wrap around arguments,
# e.g. ``<|FunctionCallEnd|>``.
_MARKER_RE = re.compile(r"<\|[^|]+\|>")


def outermost_object_span(text: str) -> str | None:
    """Return ``text`` trimmed to its first ``{`` through its last ``}``."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return text[first : last + 1]


def first_balanced_object(text: str) -> str | None:
    """Return the first brace-balanced ``{...}`` object, string-aware."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if escaped:
            escaped = False
            continue
        if char == "\\" and in_string:
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def escape_control_chars(text: str) -> str:
    """Escape raw control characters that appear inside JSON strings."""
    out: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if escaped:
            out.append(char)
            escaped = False
            continue
        if char == "\\":
            out.append(char)
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            out.append(char)
            continue
        if in_string and ord(char) < 32:
            if char == "\n":
                out.append("\\n")
            elif char == "\r":
                out.append("\\r")
            elif char == "\t":
                out.append("\\t")
            else:
                out.append(f"\\u{ord(char):04x}")
            continue
        out.append(char)
    return "".join(out)


def _candidates(text: str) -> list[str]:
    cleaned = _MARKER_RE.sub("", text).strip()
    found: list[str] = [cleaned]
    span = outermost_object_span(cleaned)
    if span is not None:
        found.append(span)
    balanced = first_balanced_object(cleaned)
    if balanced is not None:
        found.append(balanced)
    found.extend([escape_control_chars(c) for c in list(found)])
    return found


def parse_arguments(text: str | None) -> dict[str, Any]:
    """Parse an argument buffer into a mapping, salvaging what it can.

    Attempts, in order: the cleaned text, its outermost ``{...}`` span, its
    first balanced object, then each of those with raw control characters
    escaped. Returns ``{}`` when nothing parses to a JSON object.
    """
    if not text or not text.strip():
        return {}
    for candidate in _candidates(text):
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, dict):
            return value
    log.debug("Unparseable tool arguments (%d chars); using {}", len(text))
    return {}
