"""Unit tests for canonical JSON and hashing."""

from cips.utils.canonical import canonical_json, dedupe_hash


def test_canonical_json_sorts_keys():
    """Canonical JSON sorts keys."""
    obj = {"b": 1, "a": 2}
    assert canonical_json(obj) == '{"a":2,"b":1}'


def test_canonical_json_keeps_unicode():
    assert canonical_json({"text": "你好"}) == '{"text":"你好"}'


def test_dedupe_hash_deterministic():
    """Dedupe hash ignores key order."""
    h1 = dedupe_hash("om_1", {"message": {"content": "x", "chat_id": "oc_1"}})
    h2 = dedupe_hash("om_1", {"message": {"chat_id": "oc_1", "content": "x"}})
    assert h1 == h2
    assert len(h1) == 64  # SHA256 hex


def test_dedupe_hash_changes_with_payload_and_id():
    base = dedupe_hash("om_1", {"content": "x"})
    assert dedupe_hash("om_1", {"content": "y"}) != base
    assert dedupe_hash("om_2", {"content": "x"}) != base
