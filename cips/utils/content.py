"""Helpers for the platform's JSON message content."""

import json
import re
from typing import Any

_MENTION_RE = re.compile(r"<at\s+[^>]*>(.*?)</at>", re.IGNORECASE)


def parse_content_json(raw: str | None) -> dict[str, Any] | None:
    """Message content is a JSON object encoded as a string; anything else is None."""
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_text_content(raw: str | None) -> str | None:
    parsed = parse_content_json(raw)
    if parsed is None:
        return None
    text = parsed.get("text")
    return text if isinstance(text, str) else None


def strip_mention_tags(text: str) -> str:
    """Replace <at ...>name</at> with the display name."""
    return _MENTION_RE.sub(r"\1", text).strip()


def pick_string(obj: dict[str, Any], keys: list[str]) -> str | None:
    """First non-blank string value among keys."""
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def pick_int(obj: dict[str, Any], keys: list[str]) -> int | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                continue
    return None


def sanitize_file_name(raw: str) -> str:
    cleaned = re.sub(r'[\\/:*?"<>|]+', "_", raw).strip()
    return cleaned or "resource"
