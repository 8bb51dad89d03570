"""
Value helpers for recorded inputs and outputs.

Outputs arrive as whatever the agent produced: strings, JSON strings,
mappings, lists or scalars. These functions give them one consistent
meaning for blankness, comparison and text matching.
"""

import json
from typing import Any, Optional


def is_blank(value: Any) -> bool:
    """
    Return True for values that carry no content.

    None, False, whitespace-only strings and empty collections are blank.
    Zero is not.
    """
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list, tuple, set)):
        return len(value) == 0
    return False


def normalize_for_comparison(value: Any) -> Any:
    """
    Normalize an output so that equivalent representations compare equal.

    JSON strings are parsed, other strings are stripped, everything else
    is returned unchanged.
    """
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return value.strip()
    return value


def to_text(value: Any) -> str:
    """
    Render an output as text for substring matching.

    Structured values are serialized as canonical JSON (sorted keys).
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    return str(value)


def parse_mapping(value: Any) -> Optional[dict]:
    """
    Return value as a mapping, parsing JSON strings.

    Returns None when the value is not a mapping and does not parse to one.
    """
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def truncate(text: str, max_length: int, omission: str = "...") -> str:
    """Truncate text to max_length characters including the omission marker."""
    if len(text) <= max_length:
        return text
    return text[: max(max_length - len(omission), 0)] + omission
