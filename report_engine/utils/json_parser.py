import json
import re
from typing import Any, Dict, List, Optional, Union

from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?(.*?)```", re.DOTALL)
_OPEN_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?(.*)$", re.DOTALL)


def extract_fenced_block(text: str) -> Optional[str]:
    """Return the interior of the first markdown code fence, if any.

    An opening fence with no closing fence (truncated output) yields
    everything after the opening fence.
    """
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    match = _OPEN_FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return None


def find_json_object_span(text: str) -> Optional[str]:
    """Find the first balanced ``{...}`` span in text.

    Braces inside JSON strings are ignored. When no balanced span exists the
    greedy span from the first ``{`` to the last ``}`` is returned, and when
    there is no closing brace at all, everything from the first ``{``.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
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
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]

    end = text.rfind("}")
    if end > start:
        return text[start:end + 1]
    return text[start:]


def parse_json_safely(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """Parse JSON from text, handling common LLM formatting issues.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Commentary before or after the JSON
    - Leading/trailing whitespace

    Args:
        text: The text containing JSON

    Returns:
        Parsed JSON value or None if parsing fails
    """
    if not text:
        return None

    candidate = extract_fenced_block(text)
    if candidate is None:
        candidate = text.strip()

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        LOGGER.debug(f"Direct JSON parse failed: {e}, looking for object span")

    span = find_json_object_span(candidate)
    if span is None and candidate is not text:
        span = find_json_object_span(text)
    if span is None:
        return None

    try:
        return json.loads(span)
    except json.JSONDecodeError as e:
        LOGGER.warning(f"Failed to parse JSON: {e}")
        return None


def recover_array_objects(text: str, key: str) -> List[Dict[str, Any]]:
    """Recover the complete objects of a JSON array from truncated text.

    Scans the array stored under ``key`` and decodes objects one at a time,
    stopping at the first object that is cut off.

    Args:
        text: Possibly truncated JSON text
        key: Name of the array property

    Returns:
        Every object that decoded completely, in order
    """
    match = re.search(r'"%s"\s*:\s*\[' % re.escape(key), text)
    if not match:
        return []

    decoder = json.JSONDecoder()
    objects: List[Dict[str, Any]] = []
    index = match.end()
    length = len(text)

    while index < length:
        while index < length and text[index] in " \t\r\n,":
            index += 1
        if index >= length or text[index] != "{":
            break
        try:
            obj, index = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            break
        if isinstance(obj, dict):
            objects.append(obj)

    return objects
