"""Helpers for pulling structured data out of model replies."""

import json
import re
from typing import Any, Dict, Optional

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_REGION_RE = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")


def extract_json(text: str) -> Any:
    """Extract the first JSON object/array from a text blob and parse it.

    Fenced ```json blocks win over bare regions. Trailing commas are
    repaired before parsing.

    Raises ValueError if not found or parse fails.
    """
    if not text:
        raise ValueError("Empty text")

    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else None
    if candidate is None:
        match = _REGION_RE.search(text)
        if not match:
            raise ValueError("No JSON object/array found in text")
        candidate = match.group(1)

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        repaired = re.sub(r",\s*([\]\}])", r"\1", candidate)
        return json.loads(repaired)


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Like ``extract_json`` but returns None unless the reply holds a JSON object."""
    try:
        data = extract_json(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
