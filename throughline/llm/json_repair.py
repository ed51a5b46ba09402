"""Deterministic cleanup of near-valid JSON returned by language models.

Handles markdown-wrapped JSON, surrounding chatter, trailing commas and
responses truncated before their closing brackets.
"""
import json
import re
from typing import Any, List

from throughline.utils.errors import MalformedResponseError

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def extract_span(text: str, opener: str = "[", closer: str = "]") -> str:
    """First opener through last closer; through end of text if unclosed."""
    start = text.find(opener)
    if start == -1:
        return text
    end = text.rfind(closer)
    if end < start:
        return text[start:]
    return text[start:end + 1]


_CLOSERS = {"[": "]", "{": "}"}


def _unclosed(text: str):
    """Openers still open at end of text (innermost last), and whether a string is open."""
    stack = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("]", "}") and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()
    return stack, in_string


def fix_json(text: str) -> str:
    """Fix common JSON errors from LLMs."""
    text = _TRAILING_COMMA_RE.sub(r"\1", text)

    stack, in_string = _unclosed(text)
    if in_string:
        text += '"'

    if stack:
        text = text.rstrip()
        if text.endswith(","):
            text = text[:-1]
        text += "".join(_CLOSERS[opener] for opener in reversed(stack))

    return text


def clean_json(text: str, opener: str = "[", closer: str = "]") -> str:
    """Apply every deterministic cleanup step in order."""
    return fix_json(extract_span(strip_code_fences(text), opener, closer))


def parse_json_array(text: str) -> List[Any]:
    """
    Parse a JSON array from model output.

    Raises:
        MalformedResponseError: If no array survives cleanup
    """
    cleaned = clean_json(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Invalid JSON array: {e}") from e

    if not isinstance(parsed, list):
        raise MalformedResponseError("Response is not a JSON array")
    return parsed


def parse_index_array(text: str) -> List[int]:
    """
    Parse a JSON array of integers (1-based indices).

    Raises:
        MalformedResponseError: If the array is missing or holds non-integers
    """
    values = parse_json_array(text)
    indices = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise MalformedResponseError(f"Non-integer index: {value!r}")
        try:
            indices.append(int(value))
        except ValueError as e:
            raise MalformedResponseError(f"Non-integer index: {value!r}") from e
    return indices
