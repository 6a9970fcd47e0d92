"""Composition root: wires stores, queues, guards and lifecycle managers for all accounts."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from cips.config import ResolvedAccount, Settings, resolve_accounts, settings
from cips.database import StoreRegistry
from cips.engine.chats import ChatSynchronizer
from cips.engine.coordinator import Coordinator
from cips.engine.directory import DirectorySynchronizer, DirectorySyncService
from cips.engine.events import EventBus, ResourceReady, ResourcesRegistered
from cips.engine.extraction import ExtractionManager
from cips.engine.memory import MemoryRecorder
from cips.engine.resources import ResourceManager
from cips.engine.write_queue import WriteQueue
from cips.errors import UnknownAccountError
from cips.extraction.asr import OpenAiTranscriber
from cips.extraction.base import Capabilities
from cips.extraction.docx import DocxReader
from cips.extraction.ocr import TesseractOcr
from cips.platform.client import Platform, PlatformClient
from cips.schemas.events import ChatEvent, MessageEvent
from cips.schemas.records import MessageRecord
from cips.storage.repositories import persist_message
from cips.utils.canonical import canonical_json, dedupe_hash
from cips.utils.content import parse_text_content, strip_mention_tags
from cips.utils.ids import resolve_user_key

logger = logging.getLogger(__name__)


def default_capabilities() -> Capabilities:
    return Capabilities(ocr=TesseractOcr(), asr=OpenAiTranscriber(), documents=DocxReader())


def _to_int(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def build_message_record(tenant_key: str, event: MessageEvent) -> MessageRecord:
    payload = event.payload()
    message = event.message
    ids = event.sender.sender_id
    text = parse_text_content(message.content)
    return MessageRecord(
        tenant_key=tenant_key,
        message_id=message.message_id,
        chat_id=message.chat_id,
        chat_type=message.chat_type,
        message_type=message.message_type,
        sender_type=event.sender.sender_type,
        sender_open_id=ids.open_id if ids else None,
        sender_user_id=ids.user_id if ids else None,
        sender_union_id=ids.union_id if ids else None,
        thread_id=message.thread_id,
        root_id=message.root_id,
        content=message.content,
        text_content=strip_mention_tags(text) if text is not None else None,
        create_time_ms=_to_int(message.create_time),
        dedupe_hash=dedupe_hash(message.message_id, payload),
        raw_event=canonical_json(payload),
    )


class Pipeline:
    """Ingestion pipeline for every resolved account.

    Only message rows go through the per-store write queue. Resource
    registration, memory and chat metadata run as follow-up tasks once the row
    is written, so a slow platform call never holds up later writes.
    Registration emits ResourcesRegistered which schedules a download drain,
    and each finished download emits ResourceReady which schedules an
    extraction drain.
    """

    def __init__(
        self,
        accounts: list[ResolvedAccount],
        stores: StoreRegistry | None = None,
        capabilities: Capabilities | None = None,
        platform_factory: Callable[[ResolvedAccount], Platform] = PlatformClient,
        coordinator: Coordinator | None = None,
    ):
        self._accounts = {account.account_id: account for account in accounts}
        self.stores = stores or StoreRegistry()
        self.coordinator = coordinator or Coordinator()
        self.events = EventBus()
        self.write_queue = WriteQueue()
        self.capabilities = capabilities or default_capabilities()
        self._platform_factory = platform_factory
        self._platforms: dict[str, Platform] = {}
        self._followups: set[asyncio.Task] = set()

        self.memory = MemoryRecorder(self.stores)
        self.resources = ResourceManager(self.stores, self.platform_for, self.coordinator, self.events)
        self.extraction = ExtractionManager(self.stores, self.capabilities, self.memory, self.coordinator)
        self.chats = ChatSynchronizer(self.stores, self.platform_for, self.coordinator)
        self.directory = DirectorySynchronizer(self.stores, self.platform_for)
        self.directory_service = DirectorySyncService(
            self.directory, self.coordinator, self.extraction.schedule_extraction
        )

        self.events.subscribe(ResourcesRegistered, self._on_resources_registered)
        self.events.subscribe(ResourceReady, self._on_resource_ready)

    @classmethod
    def from_settings(cls, app_settings: Settings | None = None, **kwargs) -> "Pipeline":
        return cls(resolve_accounts(app_settings or settings), **kwargs)

    @property
    def accounts(self) -> list[ResolvedAccount]:
        return list(self._accounts.values())

    def account(self, account_id: str) -> ResolvedAccount:
        account = self._accounts.get(account_id)
        if account is None or not account.enabled:
            raise UnknownAccountError(f"unknown account: {account_id}")
        return account

    def platform_for(self, account: ResolvedAccount) -> Platform:
        platform = self._platforms.get(account.account_id)
        if platform is None:
            platform = self._platform_factory(account)
            self._platforms[account.account_id] = platform
        return platform

    def _on_resources_registered(self, event: ResourcesRegistered) -> None:
        self.resources.schedule_downloads(self._accounts[event.account_id])

    def _on_resource_ready(self, event: ResourceReady) -> None:
        self.extraction.schedule_extraction(self._accounts[event.account_id])

    def start(self) -> None:
        self.directory_service.start([account for account in self.accounts if account.enabled])

    def handle_message_event(self, account_id: str, event: MessageEvent) -> bool:
        """Queue persistence of one inbound message. False when the account has no store."""
        account = self.account(account_id)
        store = self.stores.resolve(account)
        if store is None:
            logger.debug("Account %s has no store; message %s not persisted", account_id, event.message.message_id)
            return False
        tenant_key = account.tenant_key(event.tenant_key)

        async def write() -> None:
            await self._persist(account, tenant_key, event)

        self.write_queue.enqueue(store.key, write)
        return True

    async def _persist(self, account: ResolvedAccount, tenant_key: str, event: MessageEvent) -> None:
        record = build_message_record(tenant_key, event)
        store = await self.stores.open(account)
        await persist_message(store, record)
        self._spawn(f"message {record.message_id}", lambda: self._after_persist(account, tenant_key, event, record))

    async def _after_persist(
        self, account: ResolvedAccount, tenant_key: str, event: MessageEvent, record: MessageRecord
    ) -> None:
        message = event.message
        await self.resources.register_and_download(
            account,
            tenant_key,
            message.message_id,
            {"chat_id": message.chat_id, "message_type": message.message_type, "content": message.content},
        )

        if record.text_content:
            sender_key = resolve_user_key(
                {
                    "user_id": record.sender_user_id,
                    "open_id": record.sender_open_id,
                    "union_id": record.sender_union_id,
                }
            )
            try:
                await self.memory.record_from_message(
                    account,
                    tenant_key,
                    message.chat_id,
                    message.chat_type,
                    sender_key or message.chat_id,
                    message.message_id,
                    record.text_content,
                )
            except Exception:
                logger.exception("Memory write for message %s failed", message.message_id)

        await self.chats.ensure_metadata(account, message.chat_id, tenant_key)

    def _spawn(self, label: str, factory: Callable[[], Awaitable[None]]) -> None:
        async def run() -> None:
            try:
                await factory()
            except Exception:
                logger.exception("Follow-up for %s failed", label)

        task = asyncio.ensure_future(run())
        self._followups.add(task)
        task.add_done_callback(self._followups.discard)

    def handle_chat_event(self, account_id: str, event: ChatEvent) -> bool:
        """Start a chat metadata/member refresh. False when the account has no store."""
        account = self.account(account_id)
        if self.stores.resolve(account) is None:
            return False
        self._spawn(
            f"chat {event.chat_id}",
            lambda: self.chats.handle_chat_event(account, event.event_type, event.chat_id, event.tenant_key),
        )
        return True

    async def register_and_download(
        self, account_id: str, tenant_key: str | None, message_id: str, raw_payload: dict
    ) -> int:
        account = self.account(account_id)
        return await self.resources.register_and_download(
            account, account.tenant_key(tenant_key), message_id, raw_payload
        )

    def run_directory_sync(self, account_id: str) -> bool:
        return self.directory_service.trigger(self.account(account_id))

    def schedule_downloads(self, account_id: str) -> bool:
        return self.resources.schedule_downloads(self.account(account_id))

    def schedule_extraction(self, account_id: str) -> bool:
        return self.extraction.schedule_extraction(self.account(account_id))

    async def _settle_writes(self) -> None:
        while True:
            await self.write_queue.wait_idle()
            if not self._followups:
                return
            await asyncio.wait(list(self._followups))

    async def wait_idle(self) -> None:
        """Wait for queued writes, their follow-ups and every drain loop they trigger."""
        while True:
            await self._settle_writes()
            await self.coordinator.wait_idle()
            if not self.write_queue.pending_keys() and not self._followups:
                return

    async def aclose(self) -> None:
        await self.directory_service.stop()
        await self._settle_writes()
        await self.coordinator.shutdown()
        for platform in self._platforms.values():
            await platform.aclose()
        self._platforms.clear()
        closer = getattr(self.capabilities.asr, "aclose", None)
        if closer is not None:
            await closer()
        await self.stores.dispose()
