"""Memory sink fed by messages and extracted attachment text."""

import logging

from cips.config import ResolvedAccount
from cips.database import StoreRegistry
from cips.schemas.records import MemoryScope
from cips.storage.repositories import get_message, insert_memory_items
from cips.utils.ids import resolve_user_key

logger = logging.getLogger(__name__)


def build_memory_scopes(chat_type: str, chat_id: str, sender_id: str, tenant_key: str) -> list[MemoryScope]:
    """Direct chats are scoped to the user; group chats to the group and the user within it."""
    if chat_type == "p2p":
        scopes = [MemoryScope("dm_user", sender_id)]
    else:
        scopes = [MemoryScope("group", chat_id), MemoryScope("group_user", f"{chat_id}:{sender_id}")]
    scopes.append(MemoryScope("tenant", tenant_key))
    return scopes


class MemoryRecorder:
    def __init__(self, stores: StoreRegistry):
        self._stores = stores

    async def record_from_message(
        self,
        account: ResolvedAccount,
        tenant_key: str,
        chat_id: str,
        chat_type: str,
        sender_id: str,
        message_id: str,
        content: str,
    ) -> int:
        if not account.config.memory.enabled:
            return 0
        text = content.strip()
        if not text:
            return 0
        store = await self._stores.open(account)
        scopes = build_memory_scopes(chat_type, chat_id, sender_id, tenant_key)
        await insert_memory_items(
            store, tenant_key, scopes, text, message_id=message_id, chat_id=chat_id, user_id=sender_id
        )
        return len(scopes)

    async def record_from_extraction(
        self, account: ResolvedAccount, tenant_key: str, message_id: str, content: str
    ) -> int:
        """Attach extracted text to the scopes of the message that carried the attachment."""
        if not account.config.memory.enabled:
            return 0
        text = content.strip()
        if not text:
            return 0
        store = await self._stores.open(account)
        message = await get_message(store, tenant_key, message_id)
        if message is None:
            logger.info("No stored message %s for extracted text; skipping memory", message_id)
            return 0
        chat_id = message["chat_id"] or ""
        sender_id = (
            resolve_user_key(
                {
                    "user_id": message["sender_user_id"],
                    "open_id": message["sender_open_id"],
                    "union_id": message["sender_union_id"],
                }
            )
            or chat_id
        )
        scopes = build_memory_scopes(message["chat_type"] or "group", chat_id, sender_id, tenant_key)
        await insert_memory_items(
            store, tenant_key, scopes, text, message_id=message_id, chat_id=chat_id, user_id=sender_id
        )
        return len(scopes)
