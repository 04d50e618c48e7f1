"""JSON extraction and repair for LLM responses.

Backends are told to answer with a bare JSON object, but in practice they
wrap it in ```json fences, surround it with prose, or get cut off at the
output token limit. parse_llm_json_response() tries, in order:

1. The first fenced code block (with or without a language tag)
2. The substring from the first '{' to the last '}'
3. The whole trimmed text
4. A repaired version of the best candidate (open string and brackets closed)

The result is an untrusted generic value; schema validation happens in the
provider layer.
"""

import json
import logging
import re
from typing import Any

from analyzic.errors import ParseError

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"```[\w+-]*\s*(.*?)```", re.DOTALL)
OPEN_FENCE_PATTERN = re.compile(r"```[\w+-]*\s*(.*)$", re.DOTALL)

PREVIEW_CHARS = 200

_CLOSERS = {"{": "}", "[": "]"}
_OPENERS = {"}": "{", "]": "["}


def extract_json_candidates(raw_text: str) -> list[tuple[str, str]]:
    """Return (strategy, candidate) pairs in the order they should be tried."""
    candidates = []

    fence = FENCE_PATTERN.search(raw_text)
    if fence and fence.group(1).strip():
        candidates.append(("fenced", fence.group(1).strip()))

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end > start:
        candidates.append(("braces", raw_text[start:end + 1]))

    candidates.append(("raw", raw_text.strip()))
    return candidates


def repair_truncated_json(text: str) -> str:
    """Close an unterminated string and any open brackets/braces.

    Walks the text once, tracking whether we are inside a quoted string
    (honoring backslash escapes) and a stack of open '{' / '['. Closers are
    appended innermost-first. Stray closers are ignored so the nesting depth
    never goes negative. Valid JSON comes back unchanged.
    """
    stack: list[str] = []
    in_string = False
    escape_next = False

    for char in text:
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
        elif char in _OPENERS:
            if stack and stack[-1] == _OPENERS[char]:
                stack.pop()

    repaired = text
    if escape_next:
        # Cut off mid-escape; a closing quote would be escaped too
        repaired = repaired[:-1]
    if in_string:
        repaired += '"'
    repaired += "".join(_CLOSERS[opener] for opener in reversed(stack))
    return repaired


def _repair_source(raw_text: str) -> str:
    """Pick the candidate most likely to hold a truncated JSON object."""
    fence = FENCE_PATTERN.search(raw_text)
    if fence and fence.group(1).strip():
        return fence.group(1).strip()

    text = raw_text
    open_fence = OPEN_FENCE_PATTERN.search(raw_text)
    if open_fence:
        text = open_fence.group(1)

    start = text.find("{")
    if start != -1:
        return text[start:].strip()
    return text.strip()


def make_preview(content: str, limit: int = PREVIEW_CHARS) -> str:
    """One-line preview of response text for error messages."""
    preview = content[:limit].replace("\n", " ")
    if len(content) > limit:
        preview += "..."
    return preview


def parse_llm_json_response(raw_text: str, provider_id: str = "") -> Any:
    """Parse JSON from an LLM response.

    Args:
        raw_text: Raw text returned by the backend
        provider_id: Used for log labels and error attribution

    Returns:
        The parsed JSON value (not yet schema-validated)

    Raises:
        ParseError: If no strategy, including repair, yields valid JSON
    """
    first_error = None
    for strategy, candidate in extract_json_candidates(raw_text):
        try:
            value = json.loads(candidate)
            if strategy != "fenced":
                logger.debug(f"[{provider_id}] Parsed response via '{strategy}' strategy")
            return value
        except json.JSONDecodeError as e:
            if first_error is None:
                first_error = e

    repaired = repair_truncated_json(_repair_source(raw_text))
    try:
        value = json.loads(repaired)
    except json.JSONDecodeError:
        logger.error(
            f"[{provider_id}] Unparseable response ({len(raw_text):,} chars), "
            f"tail: {raw_text[-500:]!r}"
        )
        preview = make_preview(raw_text)
        raise ParseError(
            provider_id,
            f"Failed to parse {provider_id or 'provider'} response as JSON "
            f"({len(raw_text):,} chars). Response preview: \"{preview}\" "
            f"Parse error: {first_error}",
            content_length=len(raw_text),
            preview=preview,
        )

    logger.warning(f"[{provider_id}] Repaired truncated JSON response ({len(raw_text):,} chars)")
    return value
