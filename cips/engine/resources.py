"""Attachment discovery and the bounded-retry download lifecycle."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from cips.config import ResolvedAccount
from cips.database import StoreContext, StoreRegistry
from cips.engine.coordinator import Coordinator
from cips.engine.events import EventBus, ResourceReady, ResourcesRegistered
from cips.errors import ResourceTooLargeError
from cips.platform.client import DownloadStream, Platform
from cips.schemas.records import (
    RESOURCE_FAILED,
    RESOURCE_PENDING,
    RESOURCE_READY,
    RESOURCE_TOO_LARGE,
    ResourceRef,
    ResourceRow,
)
from cips.storage.repositories import (
    fetch_pending_resources,
    list_resource_tenants,
    mark_resource_downloading,
    update_resource_status,
    upsert_resources,
)
from cips.utils.content import parse_content_json, pick_int, pick_string, sanitize_file_name

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
DOWNLOAD_BATCH_SIZE = 10

_IMAGE_KEYS = ["image_key", "imageKey"]
_FILE_KEYS = ["file_key", "fileKey"]
_MEDIA_KEYS = ["media_key", "mediaKey"]
_NAME_KEYS = ["file_name", "fileName", "name"]
_MIME_KEYS = ["mime_type", "mimeType", "file_type"]
_SIZE_KEYS = ["file_size", "size", "fileSize"]
_DOC_TOKEN_KEYS = ["doc_token", "docx_token", "doc_id", "docx_id", "doc_uuid", "doc_key"]
_DOC_TITLE_KEYS = ["title", "doc_title"]


def extract_resources(message_id: str, chat_id: str, message_type: str, content: str | None) -> list[ResourceRef]:
    """Find attachment references in a message's JSON content.

    Unknown shapes yield no resources rather than a guess. A payload can carry
    several, e.g. a binary attachment plus a linked document.
    """
    parsed = parse_content_json(content)
    if parsed is None:
        return []
    kind = (message_type or "").lower()
    image_key = pick_string(parsed, _IMAGE_KEYS)
    file_key = pick_string(parsed, _FILE_KEYS)
    media_key = pick_string(parsed, _MEDIA_KEYS)
    file_name = pick_string(parsed, _NAME_KEYS)
    mime_type = pick_string(parsed, _MIME_KEYS)
    size_bytes = pick_int(parsed, _SIZE_KEYS)
    doc_token = pick_string(parsed, _DOC_TOKEN_KEYS)

    found: list[ResourceRef] = []

    def add(resource_type: str, key: str, name: str | None = file_name, with_meta: bool = True) -> None:
        if any(ref.file_key == key for ref in found):
            return
        found.append(
            ResourceRef(
                message_id=message_id,
                chat_id=chat_id,
                resource_type=resource_type,
                file_key=key,
                file_name=name,
                mime_type=mime_type if with_meta else None,
                size_bytes=size_bytes if with_meta else None,
            )
        )

    if image_key or kind == "image":
        key = image_key or file_key
        if key:
            add("image", key)

    binary_key = file_key or media_key
    if binary_key and kind in ("file", "audio", "media"):
        add(kind, binary_key)
    elif binary_key and not image_key:
        add("file", binary_key)

    if doc_token:
        add("doc", doc_token, name=file_name or pick_string(parsed, _DOC_TITLE_KEYS), with_meta=False)

    return found


def _download_kind(resource_type: str) -> str:
    # The resource endpoint only distinguishes images from everything else.
    return "image" if resource_type == "image" else "file"


class ResourceManager:
    """Registers attachments and drives them through download."""

    def __init__(
        self,
        stores: StoreRegistry,
        platform_for: Callable[[ResolvedAccount], Platform],
        coordinator: Coordinator,
        events: EventBus,
    ):
        self._stores = stores
        self._platform_for = platform_for
        self._coordinator = coordinator
        self._events = events

    async def register(
        self, account: ResolvedAccount, tenant_key: str, message_id: str, raw_payload: dict[str, Any]
    ) -> list[ResourceRef]:
        """Store every attachment referenced by a message. Idempotent."""
        resources = extract_resources(
            message_id=message_id,
            chat_id=str(raw_payload.get("chat_id") or ""),
            message_type=str(raw_payload.get("message_type") or ""),
            content=raw_payload.get("content"),
        )
        if not resources:
            return []
        store = await self._stores.open(account)
        await upsert_resources(store, tenant_key, resources)
        self._coordinator.note_tenant(account.account_id, tenant_key)
        return resources

    async def register_and_download(
        self, account: ResolvedAccount, tenant_key: str, message_id: str, raw_payload: dict[str, Any]
    ) -> int:
        """Register a message's attachments and announce them for download."""
        resources = await self.register(account, tenant_key, message_id, raw_payload)
        downloadable = [ref for ref in resources if ref.resource_type != "doc"]
        if downloadable:
            self._events.emit(
                ResourcesRegistered(
                    account_id=account.account_id, tenant_key=tenant_key, count=len(downloadable)
                )
            )
        return len(resources)

    def schedule_downloads(self, account: ResolvedAccount) -> bool:
        """Start a drain loop for the account unless one is running."""
        return self._coordinator.downloads.trigger(
            account.account_id, lambda: self.process_queue(account)
        )

    async def process_queue(self, account: ResolvedAccount) -> None:
        """Download batches until every tenant's selection comes back empty."""
        store = await self._stores.open(account)
        for tenant_key in await list_resource_tenants(store, (RESOURCE_PENDING, RESOURCE_FAILED)):
            self._coordinator.note_tenant(account.account_id, tenant_key)
        max_bytes = account.max_resource_bytes
        while True:
            processed = 0
            for tenant_key in self._coordinator.tenants_for(account.account_id, account.tenant_key()):
                batch = await fetch_pending_resources(store, tenant_key, MAX_ATTEMPTS, DOWNLOAD_BATCH_SIZE)
                for row in batch:
                    await self._process_one(account, store, tenant_key, row, max_bytes)
                processed += len(batch)
            if processed == 0:
                return

    async def _process_one(
        self,
        account: ResolvedAccount,
        store: StoreContext,
        tenant_key: str,
        row: ResourceRow,
        max_bytes: int,
    ) -> None:
        try:
            await mark_resource_downloading(store, tenant_key, row.id)
            await self._download(account, store, tenant_key, row, max_bytes)
        except Exception as exc:
            logger.warning(
                "Resource %s download failed (account=%s, attempt=%d): %s",
                row.id,
                account.account_id,
                row.attempts + 1,
                exc,
            )
            await update_resource_status(
                store, tenant_key, row.id, RESOURCE_FAILED, error=str(exc) or type(exc).__name__
            )

    def _target_path(self, account: ResolvedAccount, row: ResourceRow) -> Path:
        base = Path(account.state_dir) / "resources" / sanitize_file_name(row.message_id)
        base.mkdir(parents=True, exist_ok=True)
        return base / sanitize_file_name(row.file_name or row.file_key)

    async def _download(
        self,
        account: ResolvedAccount,
        store: StoreContext,
        tenant_key: str,
        row: ResourceRow,
        max_bytes: int,
    ) -> None:
        if row.size_bytes and row.size_bytes > max_bytes:
            await self._mark_too_large(store, tenant_key, row, ResourceTooLargeError(row.size_bytes, max_bytes))
            return

        target = self._target_path(account, row)
        platform = self._platform_for(account)
        try:
            async with platform.download(row.message_id, row.file_key, _download_kind(row.resource_type)) as stream:
                if stream.content_length and stream.content_length > max_bytes:
                    raise ResourceTooLargeError(stream.content_length, max_bytes)
                await _write_stream(stream, target, max_bytes)
        except ResourceTooLargeError as exc:
            await self._mark_too_large(store, tenant_key, row, exc)
            return

        await update_resource_status(store, tenant_key, row.id, RESOURCE_READY, storage_path=str(target))
        logger.info("Resource %s ready at %s (account=%s)", row.id, target, account.account_id)
        self._events.emit(ResourceReady(account_id=account.account_id, tenant_key=tenant_key, resource_id=row.id))

    async def _mark_too_large(
        self, store: StoreContext, tenant_key: str, row: ResourceRow, exc: ResourceTooLargeError
    ) -> None:
        logger.info("Resource %s skipped: %s", row.id, exc)
        await update_resource_status(store, tenant_key, row.id, RESOURCE_TOO_LARGE, error=str(exc))


async def _write_stream(stream: DownloadStream, target: Path, max_bytes: int) -> int:
    """Write the body to `target`, aborting once it grows past `max_bytes`."""
    partial = target.with_name(target.name + ".part")
    written = 0
    try:
        async with aiofiles.open(partial, "wb") as fh:
            async for chunk in stream.chunks:
                written += len(chunk)
                if written > max_bytes:
                    raise ResourceTooLargeError(written, max_bytes)
                await fh.write(chunk)
        await aiofiles.os.replace(partial, target)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    return written
