"""Raw-text parsing and repair for oracle replies that bypass structured output."""

import json
import re
from typing import Any

import structlog

from evolution_solver.llm.exceptions import MalformedOutputError

logger = structlog.get_logger()

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    return _FENCE_RE.sub("", text.strip()).strip()


def safe_json_loads(json_str: str) -> Any:
    """Parse JSON string with fallback for common escape issues.

    Models sometimes emit invalid escape sequences or stray control
    characters. Normal parsing is tried first, then the two repairs in turn.

    Raises:
        json.JSONDecodeError: If parsing fails even after fixes.
    """
    try:
        return json.loads(json_str)
    except json.JSONDecodeError:
        pass

    # Escape lone backslashes not followed by a valid JSON escape char
    fixed_str = re.sub(r'\\(?!["\\/bfnrtu])', r"\\\\", json_str)
    try:
        return json.loads(fixed_str)
    except json.JSONDecodeError:
        pass

    fixed_str = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", fixed_str)
    return json.loads(fixed_str)


def _matching_close(text: str, start: int) -> int:
    """Index of the bracket closing the one at *start*, or -1 if truncated.

    Tracks string state so brackets inside string literals are ignored.
    """
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    i = start

    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i
        i += 1

    return -1


def extract_json_object(text: str) -> dict[str, Any]:
    """Extract the first balanced JSON object from *text*.

    Returns ``{}`` when no valid object can be found.
    """
    start = text.find("{")
    if start < 0:
        return {}
    end = _matching_close(text, start)
    if end < 0:
        return {}
    try:
        obj = safe_json_loads(text[start : end + 1])
    except (json.JSONDecodeError, ValueError):
        return {}
    return obj if isinstance(obj, dict) else {}


def recover_json_array(text: str) -> list[dict[str, Any]]:
    """Extract the complete objects of a possibly truncated JSON array.

    When a reply hits the token limit the array is cut mid-object; every
    object that closed before the cut is kept.
    """
    arr_start = text.find("[")
    if arr_start < 0:
        return []

    recovered: list[dict[str, Any]] = []
    pos = arr_start + 1

    while pos < len(text):
        while pos < len(text) and text[pos] in " \t\r\n,":
            pos += 1
        if pos >= len(text) or text[pos] == "]":
            break
        if text[pos] != "{":
            pos += 1
            continue

        end = _matching_close(text, pos)
        if end < 0:
            # Truncated object; stop
            break
        try:
            obj = safe_json_loads(text[pos : end + 1])
            if isinstance(obj, dict):
                recovered.append(obj)
        except (json.JSONDecodeError, ValueError):
            pass
        pos = end + 1

    if recovered:
        logger.debug("Recovered objects from JSON array", recovered_count=len(recovered))

    return recovered


def parse_json_payload(content: str) -> dict[str, Any]:
    """Parse an oracle reply into a JSON object.

    A bare top-level array is wrapped as ``{"items": [...]}``. Repair is
    attempted in order: direct parse, first balanced object, truncated
    array recovery.

    Raises:
        MalformedOutputError: If nothing usable can be recovered.
    """
    cleaned = strip_code_fences(content)
    if not cleaned:
        raise MalformedOutputError("Empty oracle reply")

    try:
        parsed = safe_json_loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        parsed = None

    if isinstance(parsed, dict):
        return parsed
    if isinstance(parsed, list):
        return {"items": parsed}

    first_object = cleaned.find("{")
    first_array = cleaned.find("[")
    array_first = first_array >= 0 and (first_object < 0 or first_array < first_object)

    if not array_first:
        obj = extract_json_object(cleaned)
        if obj:
            logger.info("Repaired oracle reply by object extraction")
            return obj

    items = recover_json_array(cleaned)
    if items:
        logger.warning("Recovered truncated oracle reply", recovered_items=len(items))
        return {"items": items}

    raise MalformedOutputError(
        "Could not parse oracle reply as JSON",
        content_preview=cleaned[:200],
    )
