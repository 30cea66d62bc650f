"""Turn possibly malformed model output into a JSON object.

Repairs only touch text outside string literals (trailing commas, bare keys)
or control characters inside them, so well-formed input parses unchanged.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger("smart_gazette.json_recovery")

_CODE_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*(.*)```", re.DOTALL)
_BARE_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_DIAGNOSTIC_CHARS = 500


def parse_model_json(text: str | None) -> dict[str, Any] | None:
    if text is None or not text.strip():
        return None

    candidate = strip_code_fences(text)

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end == -1 or end < start:
        logger.warning("Failed to parse JSON: no '{...}' structure found")
        return None
    candidate = candidate[start : end + 1]

    fixed = fix_common_json_errors(candidate)
    try:
        return _load_object(fixed)
    except ValueError as error:
        logger.warning(
            "Failed to parse JSON after first fix: %s; attempting aggressive recovery",
            error,
        )

    aggressive = aggressive_json_clean(fixed)
    try:
        return _load_object(aggressive)
    except ValueError as error:
        logger.error(
            "JSON parsing failed even after aggressive recovery: %s\n"
            "--- BAD JSON (first %d chars) ---\n%s",
            error,
            _DIAGNOSTIC_CHARS,
            fixed[:_DIAGNOSTIC_CHARS],
        )
        return None


def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    match = _CODE_FENCE_RE.match(stripped)
    if match is not None:
        return match.group(1).strip()
    return stripped.lstrip("`")


def fix_common_json_errors(text: str) -> str:
    """First pass: quote bare object keys and drop trailing commas."""
    return remove_trailing_commas(quote_bare_keys(text))


def aggressive_json_clean(text: str) -> str:
    """Second pass: escape raw control characters inside strings."""
    return remove_trailing_commas(escape_control_chars_in_strings(text))


def remove_trailing_commas(text: str) -> str:
    out: list[str] = []
    pending_comma: list[str] = []
    for char, in_string in _scan(text):
        if in_string:
            out.extend(pending_comma)
            pending_comma = []
            out.append(char)
            continue
        if pending_comma:
            if char.isspace():
                pending_comma.append(char)
                continue
            if char in "}]":
                # Keep the whitespace, drop the comma.
                out.extend(pending_comma[1:])
            else:
                out.extend(pending_comma)
            pending_comma = []
        if char == ",":
            pending_comma = [char]
            continue
        out.append(char)
    out.extend(pending_comma)
    return "".join(out)


def quote_bare_keys(text: str) -> str:
    out: list[str] = []
    index = 0
    last_significant = ""
    length = len(text)
    in_string = False
    escaped = False
    while index < length:
        char = text[index]
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                last_significant = '"'
            index += 1
            continue

        if char == '"':
            in_string = True
            out.append(char)
            index += 1
            continue

        if last_significant in ("{", ",") and (char.isalpha() or char == "_"):
            match = _BARE_KEY_RE.match(text, index)
            if match is not None:
                end = match.end()
                after = end
                while after < length and text[after].isspace():
                    after += 1
                if after < length and text[after] == ":":
                    out.append(f'"{match.group(0)}"')
                    index = end
                    last_significant = '"'
                    continue

        out.append(char)
        if not char.isspace():
            last_significant = char
        index += 1
    return "".join(out)


def escape_control_chars_in_strings(text: str) -> str:
    replacements = {"\n": "\\n", "\t": "\\t", "\r": "\\r"}
    out: list[str] = []
    for char, in_string in _scan(text):
        if in_string and char in replacements:
            out.append(replacements[char])
        else:
            out.append(char)
    return "".join(out)


def _scan(text: str):
    """Yield (char, inside_string) pairs; quote characters count as outside."""
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
                yield char, True
                continue
            if char == "\\":
                escaped = True
                yield char, True
                continue
            if char == '"':
                in_string = False
                yield char, False
                continue
            yield char, True
            continue
        if char == '"':
            in_string = True
        yield char, False


def _load_object(text: str) -> dict[str, Any]:
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("JSON root is not an object")
    return parsed
