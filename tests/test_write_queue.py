"""Unit tests for the per-key write queue."""

import asyncio

from cips.engine.write_queue import WriteQueue


async def test_same_key_runs_in_order_one_at_a_time():
    queue = WriteQueue()
    log = []
    running = 0
    peak = 0

    def make(i):
        async def task():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01 * (3 - i))
            log.append(i)
            running -= 1

        return task

    for i in range(3):
        queue.enqueue("store-a", make(i))
    await queue.wait_idle()

    assert log == [0, 1, 2]
    assert peak == 1


async def test_failure_does_not_block_later_writes():
    queue = WriteQueue()
    log = []

    async def boom():
        raise RuntimeError("write failed")

    async def ok():
        log.append("ok")

    queue.enqueue("store-a", boom)
    queue.enqueue("store-a", ok)
    await queue.wait_idle()

    assert log == ["ok"]
    assert queue.pending_keys() == []


async def test_different_keys_run_concurrently():
    queue = WriteQueue()
    started = []
    gate = asyncio.Event()

    async def blocked():
        started.append("a")
        await gate.wait()

    async def free():
        started.append("b")
        gate.set()

    queue.enqueue("store-a", blocked)
    queue.enqueue("store-b", free)
    await asyncio.wait_for(queue.wait_idle(), timeout=1)

    assert sorted(started) == ["a", "b"]
