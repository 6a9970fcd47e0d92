"""Single-flight guards and refresh bookkeeping shared by the engine."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class SingleFlight:
    """At most one running task per key.

    A trigger arriving while a task for the same key is active is a no-op.
    Different keys always run in parallel; this is not a lock.
    """

    def __init__(self, name: str):
        self.name = name
        self._active: dict[str, asyncio.Task] = {}

    def trigger(self, key: str, factory: Callable[[], Awaitable[None]]) -> bool:
        """Start `factory()` for `key` unless one is already running. Returns whether it started."""
        if key in self._active:
            return False
        task = asyncio.ensure_future(self._run(key, factory))
        self._active[key] = task
        task.add_done_callback(lambda done: self._release(key, done))
        return True

    async def _run(self, key: str, factory: Callable[[], Awaitable[None]]) -> None:
        try:
            await factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s run failed (account=%s)", self.name, key)

    def _release(self, key: str, done: asyncio.Task) -> None:
        if self._active.get(key) is done:
            del self._active[key]

    def is_active(self, key: str) -> bool:
        return key in self._active

    async def wait(self, key: str | None = None) -> None:
        """Wait for the active run of `key`, or of every key."""
        while True:
            if key is None:
                tasks = list(self._active.values())
            else:
                tasks = [self._active[key]] if key in self._active else []
            if not tasks:
                return
            await asyncio.wait(tasks)

    async def cancel_all(self) -> None:
        tasks = list(self._active.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._active.clear()


class Coordinator:
    """Process-wide coordination state, constructed once and passed explicitly."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.downloads = SingleFlight("resource download")
        self.extraction = SingleFlight("extraction")
        self.directory = SingleFlight("directory sync")
        self._clock = clock
        self._last_refresh: dict[str, float] = {}
        self._tenants: dict[str, list[str]] = {}

    def note_tenant(self, account_id: str, tenant_key: str) -> None:
        """Remember a tenant key seen through an account so drain loops cover it."""
        known = self._tenants.setdefault(account_id, [])
        if tenant_key not in known:
            known.append(tenant_key)

    def tenants_for(self, account_id: str, default_tenant_key: str) -> list[str]:
        known = self._tenants.get(account_id, [])
        return [default_tenant_key] + [key for key in known if key != default_tenant_key]

    def claim_refresh(self, key: str, ttl_s: float) -> bool:
        """True (and stamp now) when `key` was not refreshed within `ttl_s`."""
        now = self._clock()
        last = self._last_refresh.get(key)
        if last is not None and now - last < ttl_s:
            return False
        self._last_refresh[key] = now
        return True

    async def wait_idle(self) -> None:
        for guard in (self.downloads, self.extraction, self.directory):
            await guard.wait()

    async def shutdown(self) -> None:
        for guard in (self.downloads, self.extraction, self.directory):
            await guard.cancel_all()
