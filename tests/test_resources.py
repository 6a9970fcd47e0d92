"""Tests for attachment discovery and the download lifecycle."""

import asyncio
import json
from pathlib import Path

import pytest

from cips.engine.events import ResourceReady, ResourcesRegistered
from cips.engine.resources import MAX_ATTEMPTS, ResourceManager, _write_stream, extract_resources
from cips.errors import ResourceTooLargeError
from cips.platform.client import DownloadStream
from cips.storage.repositories import fetch_pending_resources, upsert_resources
from fakes import TENANT, rows_where

MB = 1024 * 1024


def payload(message_type: str, content: dict, chat_id: str = "oc_1") -> dict:
    return {"chat_id": chat_id, "message_type": message_type, "content": json.dumps(content)}


@pytest.fixture
def manager(stores, platform, coordinator, events):
    return ResourceManager(stores, lambda account: platform, coordinator, events)


async def resource_rows(store, message_id: str) -> list[dict]:
    return await rows_where(store, "message_resource", tenant_key=TENANT, message_id=message_id)


# --- Discovery ---


def test_image_message_yields_image_resource():
    refs = extract_resources("om_1", "oc_1", "image", json.dumps({"image_key": "img_1"}))
    assert [(r.resource_type, r.file_key) for r in refs] == [("image", "img_1")]


def test_file_with_linked_document_yields_both():
    content = json.dumps({"file_key": "f_1", "file_name": "a.pdf", "file_size": 12, "doc_token": "doc_1"})
    refs = extract_resources("om_1", "oc_1", "file", content)

    assert [(r.resource_type, r.file_key) for r in refs] == [("file", "f_1"), ("doc", "doc_1")]
    assert refs[0].file_name == "a.pdf"
    assert refs[0].size_bytes == 12
    assert refs[1].initial_status == "linked"


def test_audio_keeps_its_kind():
    refs = extract_resources("om_1", "oc_1", "audio", json.dumps({"file_key": "au_1"}))
    assert [(r.resource_type, r.file_key) for r in refs] == [("audio", "au_1")]


@pytest.mark.parametrize("content", ['{"text": "hi"}', "not json", "", '["image_key"]'])
def test_unknown_shapes_yield_nothing(content):
    assert extract_resources("om_1", "oc_1", "text", content) == []


# --- Registration ---


async def test_reregistration_updates_metadata_not_status(manager, account, store):
    await manager.register(account, TENANT, "om_1", payload("file", {"file_key": "f_1", "file_name": "a.txt"}))
    await manager.register(account, TENANT, "om_1", payload("file", {"file_key": "f_1", "file_name": "b.txt"}))

    rows = await resource_rows(store, "om_1")
    assert len(rows) == 1
    assert rows[0]["file_name"] == "b.txt"
    assert rows[0]["status"] == "pending"
    assert rows[0]["attempts"] == 0


async def test_register_and_download_announces_only_downloadable(manager, account, store, events):
    seen = []
    events.subscribe(ResourcesRegistered, seen.append)

    count = await manager.register_and_download(
        account, TENANT, "om_1", payload("file", {"file_key": "f_1", "doc_token": "doc_1"})
    )

    assert count == 2
    assert seen == [ResourcesRegistered(account_id=account.account_id, tenant_key=TENANT, count=1)]


# --- Download lifecycle ---


async def test_successful_download_marks_ready_and_emits(manager, account, store, platform, events):
    ready = []
    events.subscribe(ResourceReady, ready.append)
    platform.files["img_1"] = b"\x89PNG..."
    await manager.register(account, TENANT, "om_1", payload("image", {"image_key": "img_1"}))

    await manager.process_queue(account)

    (row,) = await resource_rows(store, "om_1")
    assert row["status"] == "ready"
    assert row["attempts"] == 1
    assert Path(row["storage_path"]).read_bytes() == b"\x89PNG..."
    assert platform.download_calls == [("om_1", "img_1", "image")]
    assert [event.resource_id for event in ready] == [row["id"]]


async def test_non_image_downloads_use_file_kind(manager, account, platform):
    await manager.register(account, TENANT, "om_1", payload("audio", {"file_key": "au_1"}))

    await manager.process_queue(account)

    assert platform.download_calls == [("om_1", "au_1", "file")]


async def test_linked_documents_are_never_downloaded(manager, account, store, platform):
    await manager.register(account, TENANT, "om_1", payload("docx", {"doc_token": "doc_1"}))

    await manager.process_queue(account)

    (row,) = await resource_rows(store, "om_1")
    assert row["status"] == "linked"
    assert platform.download_calls == []


async def test_always_failing_download_stops_at_attempt_ceiling(manager, account, store, platform):
    platform.download_error = RuntimeError("connection reset")
    await manager.register(account, TENANT, "om_1", payload("file", {"file_key": "f_1"}))

    await manager.process_queue(account)

    (row,) = await resource_rows(store, "om_1")
    assert row["status"] == "failed"
    assert row["attempts"] == MAX_ATTEMPTS == 3
    assert "connection reset" in row["error"]
    assert len(platform.download_calls) == 3
    assert await fetch_pending_resources(store, TENANT, MAX_ATTEMPTS, 10) == []


async def test_known_size_over_limit_skips_transfer(manager, account, store, platform):
    await manager.register(
        account, TENANT, "om_1", payload("file", {"file_key": "f_1", "file_size": 150 * MB})
    )

    await manager.process_queue(account)

    (row,) = await resource_rows(store, "om_1")
    assert row["status"] == "too_large"
    assert row["error"] == f"size {150 * MB} exceeds limit {100 * MB}"
    assert platform.download_calls == []


async def test_declared_length_over_limit_reads_no_body(manager, account, store, platform):
    platform.streams["f_1"] = (150 * MB, 150 * MB)
    await manager.register(account, TENANT, "om_1", payload("file", {"file_key": "f_1"}))

    await manager.process_queue(account)

    (row,) = await resource_rows(store, "om_1")
    assert row["status"] == "too_large"
    assert platform.bytes_sent == 0


async def test_unknown_size_aborts_mid_transfer(manager, make_account, stores, platform):
    account = make_account(resource_max_mb=1)
    store = await stores.open(account)
    platform.streams["f_1"] = (None, int(1.5 * MB))
    await manager.register(account, TENANT, "om_1", payload("file", {"file_key": "f_1", "file_name": "big.bin"}))

    await manager.process_queue(account)

    (row,) = await resource_rows(store, "om_1")
    assert row["status"] == "too_large"
    assert row["storage_path"] is None
    assert MB < platform.bytes_sent < 1.5 * MB
    leftovers = list((Path(account.state_dir) / "resources").rglob("*"))
    assert all(path.is_dir() for path in leftovers)


async def test_burst_registered_during_active_loop_is_drained(manager, account, store, platform, events, coordinator):
    events.subscribe(ResourcesRegistered, lambda event: manager.schedule_downloads(account))
    platform.gate = asyncio.Event()

    await manager.register_and_download(account, TENANT, "om_0", payload("file", {"file_key": "f_0"}))
    await asyncio.sleep(0)
    assert manager.schedule_downloads(account) is False

    for i in range(1, 4):
        await manager.register_and_download(account, TENANT, f"om_{i}", payload("file", {"file_key": f"f_{i}"}))
    platform.gate.set()
    await coordinator.downloads.wait(account.account_id)

    for i in range(4):
        (row,) = await resource_rows(store, f"om_{i}")
        assert row["status"] == "ready"
    assert len(platform.download_calls) == 4


async def test_event_tenant_is_drained_alongside_default(manager, account, stores, platform):
    store = await stores.open(account)
    await manager.register(account, "tenant-2", "om_9", payload("image", {"image_key": "img_9"}))

    await manager.process_queue(account)

    assert await fetch_pending_resources(store, "tenant-2", MAX_ATTEMPTS, 10) == []
    assert platform.download_calls == [("om_9", "img_9", "image")]


async def chunked(*parts: bytes):
    for part in parts:
        yield part


async def test_stream_is_written_then_moved_into_place(tmp_path):
    target = tmp_path / "body.bin"

    written = await _write_stream(DownloadStream(content_length=None, chunks=chunked(b"ab", b"cd")), target, 10)

    assert written == 4
    assert target.read_bytes() == b"abcd"
    assert not (tmp_path / "body.bin.part").exists()


async def test_oversized_stream_leaves_no_files(tmp_path):
    target = tmp_path / "body.bin"

    with pytest.raises(ResourceTooLargeError):
        await _write_stream(DownloadStream(content_length=None, chunks=chunked(b"abc", b"def")), target, 4)

    assert list(tmp_path.iterdir()) == []


async def test_tenants_left_pending_before_restart_are_drained(manager, account, stores, platform):
    store = await stores.open(account)
    # Registered by a previous process, so this coordinator has never seen the tenant.
    await upsert_resources(store, "tenant-2", extract_resources("om_9", "oc_1", "image", '{"image_key": "img_9"}'))

    await manager.process_queue(account)

    assert platform.download_calls == [("om_9", "img_9", "image")]
    assert await fetch_pending_resources(store, "tenant-2", MAX_ATTEMPTS, 10) == []
