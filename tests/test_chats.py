"""Tests for chat metadata and member snapshots."""

import pytest

from cips.engine.chats import ChatSynchronizer, normalize_chat_info, normalize_chat_member
from cips.engine.coordinator import Coordinator
from fakes import TENANT, rows_where


@pytest.fixture
def now():
    return [1000.0]


@pytest.fixture
def chats(stores, platform, now):
    return ChatSynchronizer(stores, lambda account: platform, Coordinator(clock=lambda: now[0]))


def test_chat_info_owner_from_id_bundle():
    info = normalize_chat_info({"chat_id": "oc_1", "owner": {"open_id": "ou_9"}, "member_count": 4})
    assert info.owner_key == "ou_9"
    assert info.member_count == 4


def test_chat_info_without_id_is_rejected():
    assert normalize_chat_info({"name": "nameless"}) is None


def test_member_falls_back_to_member_id_and_role_flags():
    member = normalize_chat_member({"member_id": "m_1", "member_role": "owner", "join_time": "1700000000000"})
    assert member.user_key == "m_1"
    assert member.is_owner is True
    assert member.is_admin is False
    assert member.joined_at.year == 2023


async def test_sync_metadata_upserts_chat(chats, account, stores, platform):
    platform.chats["oc_1"] = {"chat_id": "oc_1", "name": "Ops", "chat_mode": "group", "owner_id": "ou_1"}

    assert await chats.sync_metadata(account, "oc_1") is True
    platform.chats["oc_1"]["name"] = "Ops Team"
    assert await chats.sync_metadata(account, "oc_1") is True

    store = await stores.open(account)
    (chat,) = await rows_where(store, "im_chat", tenant_key=TENANT)
    assert chat["name"] == "Ops Team"
    assert chat["owner_id"] == "ou_1"


async def test_sync_members_replaces_snapshot(chats, account, stores, platform):
    platform.members["oc_1"] = [{"open_id": f"ou_{i}", "name": f"User {i}"} for i in range(5)]
    assert await chats.sync_members(account, "oc_1") == 5

    platform.members["oc_1"] = [{"open_id": "ou_1"}, {"open_id": "ou_1"}, {"name": "no ids"}]
    assert await chats.sync_members(account, "oc_1") == 2

    store = await stores.open(account)
    members = await rows_where(store, "im_chat_member", tenant_key=TENANT, chat_id="oc_1")
    assert [m["user_key"] for m in members] == ["ou_1"]


async def test_ensure_metadata_respects_ttl(chats, account, platform, now):
    platform.chats["oc_1"] = {"chat_id": "oc_1", "name": "Ops"}
    calls = []
    original = platform.get_chat

    async def counting(chat_id):
        calls.append(chat_id)
        return await original(chat_id)

    platform.get_chat = counting

    await chats.ensure_metadata(account, "oc_1")
    await chats.ensure_metadata(account, "oc_1")
    now[0] += 10 * 60 + 1
    await chats.ensure_metadata(account, "oc_1")

    assert calls == ["oc_1", "oc_1"]


async def test_ensure_metadata_logs_failures(chats, account, platform, caplog):
    async def broken(chat_id):
        raise RuntimeError("platform down")

    platform.get_chat = broken

    await chats.ensure_metadata(account, "oc_1")

    assert "platform down" in caplog.text


async def test_member_event_syncs_both(chats, account, stores, platform):
    platform.chats["oc_1"] = {"chat_id": "oc_1", "name": "Ops"}
    platform.members["oc_1"] = [{"open_id": "ou_1"}]

    await chats.handle_chat_event(account, "member_changed", "oc_1", "tenant-2")

    store = await stores.open(account)
    assert len(await rows_where(store, "im_chat", tenant_key="tenant-2")) == 1
    assert len(await rows_where(store, "im_chat_member", tenant_key="tenant-2")) == 1
