"""Canonical JSON and hashing utilities."""

import hashlib
import json
from decimal import Decimal
from typing import Any


def _canonical_value(obj: Any) -> Any:
    """Convert value for canonical representation."""
    if obj is None:
        return None
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, (int, float, Decimal)):
        return float(obj) if isinstance(obj, (float, Decimal)) else int(obj)
    if isinstance(obj, dict):
        return {str(k): _canonical_value(v) for k, v in sorted(obj.items())}
    if isinstance(obj, (list, tuple)):
        return [_canonical_value(v) for v in obj]
    if isinstance(obj, str):
        return obj
    return str(obj)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON string (sorted keys, consistent formatting)."""
    canonical = _canonical_value(obj)
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def dedupe_hash(message_id: str, payload: Any) -> str:
    """SHA256 over the message id and the canonical payload."""
    digest = hashlib.sha256()
    digest.update(message_id.encode())
    digest.update(b":")
    digest.update(canonical_json(payload).encode())
    return digest.hexdigest()
