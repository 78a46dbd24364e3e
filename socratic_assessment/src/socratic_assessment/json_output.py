"""Helpers for pulling a JSON object out of free-form model output."""

import json
import re
from typing import Any, Dict, Optional

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_OBJECT = re.compile(r"\{[\s\S]*\}")


def strip_code_fences(text: str) -> str:
    """Return the body of a ```json fenced block if present, else the text."""
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse the first JSON object in `text`.

    Returns:
        The parsed dict, or None if nothing parseable was found
    """
    if not text:
        return None
    clean = strip_code_fences(text)
    try:
        parsed = json.loads(clean)
    except (json.JSONDecodeError, ValueError):
        match = _OBJECT.search(clean)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except (json.JSONDecodeError, ValueError):
            return None
    return parsed if isinstance(parsed, dict) else None
