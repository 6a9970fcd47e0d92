"""Chat metadata and member snapshots."""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from cips.config import ResolvedAccount
from cips.database import StoreRegistry
from cips.engine.coordinator import Coordinator
from cips.platform.client import Page, Platform, collect_all_pages
from cips.schemas.records import ChatInfo, ChatMember
from cips.storage.repositories import replace_chat_members, upsert_chat_info
from cips.utils.content import pick_int
from cips.utils.ids import resolve_user_key

logger = logging.getLogger(__name__)


def _str(raw: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str):
            return value
    return None


def _id_bundle(raw: Any) -> dict[str, str | None]:
    if not isinstance(raw, dict):
        return {}
    return {key: _str(raw, key) for key in ("user_id", "open_id", "union_id")}


def normalize_chat_info(raw: dict[str, Any]) -> ChatInfo | None:
    chat_id = _str(raw, "chat_id", "chatId")
    if not chat_id:
        return None
    owner = raw.get("owner_id", raw.get("owner"))
    if isinstance(owner, str):
        # The chat endpoint returns the owner id flat, typed by owner_id_type.
        owner_key = owner or None
    else:
        owner_key = resolve_user_key(_id_bundle(owner))
    member_count = raw.get("member_count")
    return ChatInfo(
        chat_id=chat_id,
        name=_str(raw, "name"),
        description=_str(raw, "description"),
        owner_key=owner_key,
        owner_id_type=_str(raw, "owner_id_type"),
        member_count=member_count if isinstance(member_count, int) and not isinstance(member_count, bool) else None,
        chat_mode=_str(raw, "chat_mode"),
        chat_type=_str(raw, "chat_type"),
    )


def normalize_chat_member(raw: dict[str, Any]) -> ChatMember | None:
    ids = _id_bundle(raw)
    if not any(ids.values()):
        fallback = _str(raw, "member_id", "id")
        if fallback:
            ids["user_id"] = fallback
    user_key = resolve_user_key(ids)
    if not user_key:
        return None
    role = _str(raw, "role", "member_role")
    joined_ms = pick_int(raw, ["join_time", "joined_at"])
    return ChatMember(
        user_key=user_key,
        open_id=ids.get("open_id"),
        user_id=ids.get("user_id"),
        union_id=ids.get("union_id"),
        name=_str(raw, "name"),
        role=role,
        is_owner=bool(raw.get("is_owner")) or role == "owner",
        is_admin=bool(raw.get("is_admin")) or role == "admin",
        joined_at=datetime.fromtimestamp(joined_ms / 1000, tz=timezone.utc) if joined_ms is not None else None,
    )


class ChatSynchronizer:
    def __init__(
        self,
        stores: StoreRegistry,
        platform_for: Callable[[ResolvedAccount], Platform],
        coordinator: Coordinator,
    ):
        self._stores = stores
        self._platform_for = platform_for
        self._coordinator = coordinator

    async def sync_metadata(self, account: ResolvedAccount, chat_id: str, tenant_key: str | None = None) -> bool:
        store = self._stores.resolve(account)
        if store is None:
            return False
        await self._stores.ensure_schema(store)
        raw = await self._platform_for(account).get_chat(chat_id)
        info = normalize_chat_info(raw) if raw else None
        if info is None:
            return False
        await upsert_chat_info(store, account.tenant_key(tenant_key), info)
        return True

    async def sync_members(self, account: ResolvedAccount, chat_id: str, tenant_key: str | None = None) -> int:
        store = self._stores.resolve(account)
        if store is None:
            return 0
        await self._stores.ensure_schema(store)
        platform = self._platform_for(account)

        async def fetch_page(page_token: str | None) -> Page[dict[str, Any]]:
            return await platform.list_chat_members(chat_id, page_token)

        members = [
            member
            for member in (normalize_chat_member(raw) for raw in await collect_all_pages(fetch_page))
            if member is not None
        ]
        await replace_chat_members(store, account.tenant_key(tenant_key), chat_id, members)
        return len(members)

    async def ensure_metadata(self, account: ResolvedAccount, chat_id: str, tenant_key: str | None = None) -> None:
        """Refresh chat metadata at most once per TTL window; failures are only logged."""
        ttl_s = account.config.chat_sync_ttl_minutes * 60
        if not self._coordinator.claim_refresh(f"{account.account_id}:{chat_id}", ttl_s):
            return
        try:
            await self.sync_metadata(account, chat_id, tenant_key)
        except Exception as exc:
            logger.error("Chat metadata sync failed (account=%s, chat=%s): %s", account.account_id, chat_id, exc)

    async def handle_chat_event(
        self, account: ResolvedAccount, event_type: str, chat_id: str, tenant_key: str | None = None
    ) -> None:
        if not chat_id:
            return
        await self.sync_metadata(account, chat_id, tenant_key)
        if event_type == "member_changed":
            await self.sync_members(account, chat_id, tenant_key)
