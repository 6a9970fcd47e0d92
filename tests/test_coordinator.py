"""Unit tests for single-flight guards and refresh bookkeeping."""

import asyncio

from cips.engine.coordinator import Coordinator, SingleFlight


async def test_trigger_while_active_is_noop():
    guard = SingleFlight("test")
    gate = asyncio.Event()
    runs = []

    async def work():
        runs.append(1)
        await gate.wait()

    assert guard.trigger("acct", work) is True
    assert guard.trigger("acct", work) is False
    assert guard.is_active("acct")

    gate.set()
    await guard.wait("acct")

    assert runs == [1]
    assert not guard.is_active("acct")
    assert guard.trigger("acct", work) is True
    await guard.wait()


async def test_failed_run_releases_the_key():
    guard = SingleFlight("test")

    async def boom():
        raise RuntimeError("nope")

    guard.trigger("acct", boom)
    await guard.wait()

    assert not guard.is_active("acct")


def test_claim_refresh_respects_ttl():
    now = [100.0]
    coordinator = Coordinator(clock=lambda: now[0])

    assert coordinator.claim_refresh("acct:oc_1", 600) is True
    now[0] += 599
    assert coordinator.claim_refresh("acct:oc_1", 600) is False
    now[0] += 2
    assert coordinator.claim_refresh("acct:oc_1", 600) is True


def test_tenants_for_puts_default_first():
    coordinator = Coordinator()
    coordinator.note_tenant("acct", "t-2")
    coordinator.note_tenant("acct", "t-1")
    coordinator.note_tenant("acct", "t-2")

    assert coordinator.tenants_for("acct", "t-1") == ["t-1", "t-2"]
    assert coordinator.tenants_for("other", "t-9") == ["t-9"]
