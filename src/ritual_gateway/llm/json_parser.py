"""
Lenient JSON extraction from model output.

Models wrap JSON in prose or markdown fences often enough that a plain
json.loads() is not sufficient. extract_json() tries, in order:
  1. The whole string
  2. The first ```json fenced block
  3. The outermost {...} or [...] span
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def _try_load(text: str) -> Any | None:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def extract_json(text: str) -> Any | None:
    """Return the first JSON value found in text, or None."""
    if not text or not text.strip():
        return None

    stripped = text.strip()
    data = _try_load(stripped)
    if data is not None:
        return data

    fence = _FENCE_PATTERN.search(stripped)
    if fence:
        data = _try_load(fence.group(1).strip())
        if data is not None:
            return data

    for opener, closer in (("{", "}"), ("[", "]")):
        start = stripped.find(opener)
        end = stripped.rfind(closer)
        if start != -1 and end > start:
            data = _try_load(stripped[start : end + 1])
            if data is not None:
                return data

    logger.debug(f"[JSONParser] No JSON found in {len(text)} chars")
    return None
