import json
import re
from typing import Any, List, Optional

from backend.utils.logger import get_logger

logger = get_logger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", flags=re.IGNORECASE)


def parse_json_flexible(text: str) -> Optional[Any]:
    """
    Parse JSON out of an LLM reply.

    Tries, in order: the raw text, fenced ```json blocks, the outermost
    ``[...]`` span and the outermost ``{...}`` span. Returns None when no
    candidate parses.
    """
    if not isinstance(text, str):
        return None

    stripped = text.strip()
    if not stripped:
        return None

    candidates: List[str] = [stripped]
    candidates.extend(block.strip() for block in _FENCED_BLOCK.findall(stripped) if block.strip())

    array_start = stripped.find("[")
    array_end = stripped.rfind("]")
    if array_start >= 0 and array_end > array_start:
        candidates.append(stripped[array_start:array_end + 1].strip())

    object_start = stripped.find("{")
    object_end = stripped.rfind("}")
    if object_start >= 0 and object_end > object_start:
        candidates.append(stripped[object_start:object_end + 1].strip())

    seen = set()
    for candidate in candidates:
        if candidate in seen:
            continue
        seen.add(candidate)
        try:
            # strict=False tolerates raw newlines inside strings
            return json.loads(candidate, strict=False)
        except json.JSONDecodeError:
            continue

    logger.debug("No JSON payload found in LLM reply (truncated): %s", stripped[:200])
    return None


def parse_json_list(text: str) -> Optional[List[Any]]:
    """Like parse_json_flexible, but only accepts a list (a single object is wrapped)."""
    parsed = parse_json_flexible(text)
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in ("questions", "results", "items"):
            if isinstance(parsed.get(key), list):
                return parsed[key]
        return [parsed]
    return None
