"""Tolerant extraction of a JSON value from raw completion text.

LLM output arrives code-fenced, wrapped in prose, or truncated mid-array when
the token budget runs out. Strategies run in order and the first one that
yields a JSON object or array wins:

1. strict: strip code fences, then json.loads
2. balanced: first balanced {...} / [...] value found by a depth walk that
   ignores brackets inside quoted strings
3. partial_recipes: parse the "recipes" array element by element, keeping
   every object that closes and dropping the one that was cut off

Core Functions:
- find_balanced_end(): Depth walk returning the end index of a balanced value
- extract_json(): Run the strategy chain, raise ParseFailure if all fail
"""

import json
import re
from typing import Any, Callable, Optional

from src.utils.errors import ParseFailure
from src.utils.logger import logger

_FENCE_START = re.compile(r"^\s*```[a-zA-Z]*\s*")
_FENCE_END = re.compile(r"\s*```\s*$")
_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json (or ```) marker and a trailing ``` marker."""
    return _FENCE_END.sub("", _FENCE_START.sub("", text.strip()))


def find_balanced_end(text: str, start: int) -> Optional[int]:
    """Walk from an opening bracket to its matching closer.

    Brackets inside string literals are ignored (tracks an in-string flag and
    a backslash-escape flag). A mismatched closer counts as unbalanced.

    Args:
        text: Text to scan.
        start: Index of an opening "{" or "[".

    Returns:
        Index one past the matching closer, or None if the value never closes.
    """
    stack: list[str] = []
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return index + 1
    return None


def _loads_container(candidate: str) -> Optional[Any]:
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, (dict, list)) else None


def _strict_parse(text: str) -> Optional[Any]:
    return _loads_container(strip_code_fences(text))


def _balanced_parse(text: str) -> Optional[Any]:
    match = re.search(r"[\{\[]", text)
    if not match:
        return None
    end = find_balanced_end(text, match.start())
    if end is None:
        return None
    return _loads_container(text[match.start():end])


def _partial_recipes_parse(text: str) -> Optional[Any]:
    key_index = text.find('"recipes"')
    if key_index == -1:
        return None
    array_start = text.find("[", key_index)
    if array_start == -1:
        return None

    recipes = []
    position = array_start + 1
    while position < len(text):
        # Skip separators between elements
        while position < len(text) and text[position] in " \t\r\n,":
            position += 1
        if position >= len(text) or text[position] != "{":
            break
        end = find_balanced_end(text, position)
        if end is None:
            break
        element = _loads_container(text[position:end])
        if isinstance(element, dict):
            recipes.append(element)
        position = end

    if not recipes:
        return None
    return {"recipes": recipes}


STRATEGIES: list[tuple[str, Callable[[str], Optional[Any]]]] = [
    ("strict", _strict_parse),
    ("balanced", _balanced_parse),
    ("partial_recipes", _partial_recipes_parse),
]


def extract_json(text: Optional[str]) -> Any:
    """Recover a JSON object or array from raw response text.

    Args:
        text: Raw completion text (may be fenced, prose-wrapped or truncated).

    Returns:
        Parsed dict or list from the first strategy that succeeds.

    Raises:
        ParseFailure: If no strategy yields a value.
    """
    if not text or not text.strip():
        raise ParseFailure("Failed to parse structured output JSON (empty response)")

    for name, strategy in STRATEGIES:
        value = strategy(text)
        if value is not None:
            if name != "strict":
                logger.debug(f"Recovered JSON with '{name}' strategy")
            return value

    raise ParseFailure("Failed to parse structured output JSON")
