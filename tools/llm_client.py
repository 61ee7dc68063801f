"""Parsing of structured (JSON) replies from the generation engine."""

import json
import re
from typing import Iterator

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)

# Models often emit raw newlines inside string values; strict=False accepts them.
_LENIENT_DECODER = json.JSONDecoder(strict=False)


def _candidates(text: str) -> Iterator[str]:
    """Substrings that might hold the JSON document, most likely first."""
    yield text
    for match in _JSON_FENCE_RE.finditer(text):
        yield match.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        yield text[start:end + 1]


def parse_json_response(text: str) -> dict:
    """Extract a JSON object from an engine reply.

    Accepts bare JSON, JSON inside a markdown fence, or JSON embedded in
    prose. A top-level list is unwrapped to its first object.

    Raises:
        ValueError: no candidate decodes to an object.
    """
    text = (text or "").strip()
    for candidate in _candidates(text):
        try:
            value = _LENIENT_DECODER.decode(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
        if isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    return item
    raise ValueError(f"Failed to parse JSON from LLM response: {text[:200]}...")
