"""Per-key serialized writes."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

WriteTask = Callable[[], Awaitable[None]]


class WriteQueue:
    """Runs at most one write per ordering key at a time, in submission order.

    Writes for different keys run concurrently. A failed write is logged and
    swallowed; it never cancels or blocks the writes queued behind it.
    """

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Task] = {}

    def enqueue(self, key: str, task: WriteTask) -> None:
        """Schedule `task` after everything already queued for `key`. Fire-and-forget."""
        previous = self._tails.get(key)
        tail = asyncio.ensure_future(self._run(key, previous, task))
        self._tails[key] = tail
        tail.add_done_callback(lambda done: self._release(key, done))

    async def _run(self, key: str, previous: asyncio.Task | None, task: WriteTask) -> None:
        if previous is not None:
            # _run never raises, so this only waits for the predecessor to settle.
            await asyncio.wait([previous])
        try:
            await task()
        except Exception:
            logger.exception("Queued write failed (key=%s)", key)

    def _release(self, key: str, done: asyncio.Task) -> None:
        if self._tails.get(key) is done:
            del self._tails[key]

    def pending_keys(self) -> list[str]:
        return list(self._tails)

    async def wait_idle(self) -> None:
        """Wait until every queued write, including ones queued meanwhile, has settled."""
        while self._tails:
            await asyncio.wait(list(self._tails.values()))
