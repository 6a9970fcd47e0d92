"""Identity helpers."""

from collections.abc import Mapping
from typing import Any

USER_ID_KEYS = ("user_id", "open_id", "union_id")


def resolve_user_key(ids: Mapping[str, Any] | None) -> str | None:
    """First non-empty of user_id, open_id, union_id."""
    if not ids:
        return None
    for key in USER_ID_KEYS:
        value = ids.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
