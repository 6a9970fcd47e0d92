"""Extraction lifecycle: pick up downloaded resources and derive text from them."""

import logging

from cips.config import ResolvedAccount
from cips.database import StoreContext, StoreRegistry
from cips.engine.coordinator import Coordinator
from cips.engine.memory import MemoryRecorder
from cips.errors import MissingCredentialError
from cips.extraction.base import Capabilities
from cips.schemas.records import (
    EXTRACTION_EMPTY,
    EXTRACTION_FAILED,
    EXTRACTION_PROCESSING,
    EXTRACTION_READY,
    RESOURCE_READY,
    ExtractionTask,
)
from cips.storage.repositories import list_pending_extractions, list_resource_tenants, upsert_extraction

logger = logging.getLogger(__name__)

EXTRACTION_BATCH_SIZE = 5
MISSING_ASR_KEY = "missing OpenAI API key"


class ExtractionManager:
    """Drains `ready` resources through OCR, speech-to-text or document reading.

    Each resource is attempted at most once per drain run; a failed extraction is
    picked up again by the next run unless the failure was a policy decision
    (missing credential), which is stored as not retryable.
    """

    def __init__(
        self,
        stores: StoreRegistry,
        capabilities: Capabilities,
        memory: MemoryRecorder,
        coordinator: Coordinator,
    ):
        self._stores = stores
        self._caps = capabilities
        self._memory = memory
        self._coordinator = coordinator

    def handled_selection(self, account: ResolvedAccount) -> tuple[list[str], list[str]]:
        """(resource types handled whole, file-name suffixes handled for `file`)."""
        cfg = account.config.extraction
        if not cfg.enabled:
            return [], []
        types = []
        if cfg.ocr.enabled:
            types.append("image")
        if cfg.asr.enabled:
            types.append("audio")
        suffixes = list(self._caps.documents.suffixes) if cfg.docx.enabled else []
        return types, suffixes

    def schedule_extraction(self, account: ResolvedAccount) -> bool:
        return self._coordinator.extraction.trigger(
            account.account_id, lambda: self.process_queue(account)
        )

    async def process_queue(self, account: ResolvedAccount) -> None:
        types, suffixes = self.handled_selection(account)
        if not types and not suffixes:
            return
        store = await self._stores.open(account)
        for tenant_key in await list_resource_tenants(store, (RESOURCE_READY,)):
            self._coordinator.note_tenant(account.account_id, tenant_key)
        attempted: dict[str, set[int]] = {}
        while True:
            processed = 0
            for tenant_key in self._coordinator.tenants_for(account.account_id, account.tenant_key()):
                seen = attempted.setdefault(tenant_key, set())
                batch = await list_pending_extractions(
                    store, tenant_key, types, suffixes, seen, EXTRACTION_BATCH_SIZE
                )
                for task in batch:
                    seen.add(task.resource_id)
                    await self._process_one(account, store, tenant_key, task)
                processed += len(batch)
            if processed == 0:
                return

    async def _process_one(
        self, account: ResolvedAccount, store: StoreContext, tenant_key: str, task: ExtractionTask
    ) -> None:
        try:
            await upsert_extraction(
                store,
                tenant_key,
                task.message_id,
                task.resource_id,
                task.resource_type,
                EXTRACTION_PROCESSING,
            )
            await self._dispatch(account, store, tenant_key, task)
        except Exception as exc:
            retryable = not isinstance(exc, MissingCredentialError)
            logger.warning(
                "Extraction of resource %s failed (account=%s, retryable=%s): %s",
                task.resource_id,
                account.account_id,
                retryable,
                exc,
            )
            await upsert_extraction(
                store,
                tenant_key,
                task.message_id,
                task.resource_id,
                task.resource_type,
                EXTRACTION_FAILED,
                error=str(exc) or type(exc).__name__,
                retryable=retryable,
            )

    async def _dispatch(
        self, account: ResolvedAccount, store: StoreContext, tenant_key: str, task: ExtractionTask
    ) -> None:
        cfg = account.config.extraction
        kind = task.resource_type.lower()

        if kind == "image":
            languages = list(cfg.ocr.languages)
            result = await self._caps.ocr.recognize(task.storage_path, languages)
            await self._record(
                account, store, tenant_key, task, "image", result.text, result.model,
                languages[0] if languages else None,
            )
            return

        if kind == "audio":
            api_key = (cfg.asr.api_key or "").strip() or account.openai_api_key
            if not api_key:
                raise MissingCredentialError(MISSING_ASR_KEY)
            result = await self._caps.asr.transcribe(
                task.storage_path, api_key, cfg.asr.model, cfg.asr.language
            )
            await self._record(
                account, store, tenant_key, task, "audio", result.text, result.model, cfg.asr.language
            )
            return

        if kind == "file":
            name = (task.file_name or "").lower()
            if not name.endswith(tuple(self._caps.documents.suffixes)):
                return
            text = await self._caps.documents.read_text(task.storage_path)
            await self._record(account, store, tenant_key, task, "docx", text, "docx", None)
            return

        logger.debug("No extractor for resource %s (%s)", task.resource_id, kind)

    async def _record(
        self,
        account: ResolvedAccount,
        store: StoreContext,
        tenant_key: str,
        task: ExtractionTask,
        resource_type: str,
        text: str,
        model: str,
        language: str | None,
    ) -> None:
        text = (text or "").strip()
        await upsert_extraction(
            store,
            tenant_key,
            task.message_id,
            task.resource_id,
            resource_type,
            EXTRACTION_READY if text else EXTRACTION_EMPTY,
            text=text,
            language=language,
            model=model,
        )
        if not text:
            return
        try:
            await self._memory.record_from_extraction(account, tenant_key, task.message_id, text)
        except Exception:
            logger.exception("Memory write for resource %s failed", task.resource_id)
