"""Org directory synchronization: BFS over departments, then a full member snapshot."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from cips.config import ResolvedAccount
from cips.database import StoreRegistry
from cips.engine.coordinator import Coordinator
from cips.platform.client import DirectoryQuery, Page, Platform, collect_all_pages
from cips.schemas.records import Department, DirectoryUser, Relation
from cips.storage.repositories import replace_directory_snapshot
from cips.utils.ids import resolve_user_key

logger = logging.getLogger(__name__)

ROOT_PLACEHOLDER_NAME = "Root Department"


def _str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    return value if isinstance(value, str) else None


def normalize_department(raw: dict[str, Any]) -> Department | None:
    """Map a platform department object; None when it carries no id."""
    department_id = _str(raw, "department_id") or _str(raw, "id")
    if not department_id:
        return None
    member_count = raw.get("member_count")
    if isinstance(member_count, bool) or not isinstance(member_count, int):
        member_count = None
    return Department(
        department_id=department_id,
        name=_str(raw, "name"),
        parent_department_id=_str(raw, "parent_department_id"),
        leader_user_id=_str(raw, "leader_user_id"),
        status=_str(raw, "status"),
        member_count=member_count,
    )


def normalize_user(raw: dict[str, Any]) -> DirectoryUser:
    department_ids = raw.get("department_ids")
    ids = (
        [entry.strip() for entry in department_ids if isinstance(entry, str) and entry.strip()]
        if isinstance(department_ids, list)
        else []
    )
    if not ids and _str(raw, "department_id"):
        ids.append(raw["department_id"])
    return DirectoryUser(
        user_id=_str(raw, "user_id"),
        open_id=_str(raw, "open_id"),
        union_id=_str(raw, "union_id"),
        name=_str(raw, "name") or _str(raw, "en_name"),
        email=_str(raw, "email") or _str(raw, "enterprise_email"),
        mobile=_str(raw, "mobile"),
        job_title=_str(raw, "job_title"),
        status=_str(raw, "status"),
        department_ids=ids,
    )


def query_for(account: ResolvedAccount) -> DirectoryQuery:
    cfg = account.config.directory_sync
    return DirectoryQuery(user_id_type=cfg.user_id_type, department_id_type=cfg.department_id_type)


async def fetch_all_departments(platform: Platform, root_id: str, query: DirectoryQuery) -> list[Department]:
    """Breadth-first crawl from `root_id`.

    Each parent is expanded at most once and each department is returned once,
    so cycles in the reported tree terminate.
    When the crawl never reports the root itself it is fetched directly; if that
    fetch fails too, a placeholder root is returned instead of raising.
    """
    queue = deque([root_id])
    visited: set[str] = set()
    seen: set[str] = set()
    results: list[Department] = []

    while queue:
        parent_id = queue.popleft()
        if not parent_id or parent_id in visited:
            continue
        visited.add(parent_id)

        async def fetch_page(page_token: str | None, parent_id: str = parent_id) -> Page[dict[str, Any]]:
            return await platform.list_department_children(parent_id, page_token, query)

        for raw in await collect_all_pages(fetch_page):
            dept = normalize_department(raw)
            if dept is None or dept.department_id in seen:
                continue
            seen.add(dept.department_id)
            results.append(dept)
            if dept.department_id not in visited:
                queue.append(dept.department_id)

    if not any(dept.department_id == root_id for dept in results):
        try:
            raw_root = await platform.get_department(root_id, query)
            root = normalize_department(raw_root) if raw_root else None
        except Exception as exc:
            logger.error("Failed fetching root department %s: %s", root_id, exc)
            root = Department(department_id=root_id, name=ROOT_PLACEHOLDER_NAME)
        if root is not None:
            results.insert(0, root)

    return results


async def fetch_users_for_departments(
    platform: Platform, departments: list[Department], query: DirectoryQuery
) -> tuple[dict[str, DirectoryUser], list[Relation]]:
    """Members of every department keyed by user key, plus one relation per (user, department).

    A department whose listing fails is logged and skipped.
    """
    users: dict[str, DirectoryUser] = {}
    relations: list[Relation] = []
    seen_pairs: set[tuple[str, str]] = set()

    for dept in departments:
        department_id = dept.department_id

        async def fetch_page(page_token: str | None, department_id: str = department_id) -> Page[dict[str, Any]]:
            return await platform.list_department_users(department_id, page_token, query)

        try:
            members = await collect_all_pages(fetch_page)
        except Exception as exc:
            logger.error("Failed fetching users for department %s: %s", department_id, exc)
            continue

        for raw in members:
            user = normalize_user(raw)
            user_key = resolve_user_key(
                {"user_id": user.user_id, "open_id": user.open_id, "union_id": user.union_id}
            )
            if not user_key:
                continue
            users.setdefault(user_key, user)
            if (user_key, department_id) in seen_pairs:
                continue
            seen_pairs.add((user_key, department_id))
            primary = user.department_ids[0] if user.department_ids else None
            relations.append(Relation(user_key, department_id, is_primary=primary == department_id))

    return users, relations


class DirectorySynchronizer:
    def __init__(self, stores: StoreRegistry, platform_for: Callable[[ResolvedAccount], Platform]):
        self._stores = stores
        self._platform_for = platform_for

    async def run(self, account: ResolvedAccount) -> bool:
        """One full sync. Returns False when the account has no store or sync is disabled."""
        if not account.config.directory_sync.enabled:
            return False
        store = self._stores.resolve(account)
        if store is None:
            return False
        await self._stores.ensure_schema(store)

        platform = self._platform_for(account)
        query = query_for(account)
        tenant_key = account.tenant_key()
        logger.info("Directory sync started (account=%s)", account.account_id)

        departments = await fetch_all_departments(
            platform, account.config.directory_sync.root_department_id, query
        )
        users, relations = await fetch_users_for_departments(platform, departments, query)
        await replace_directory_snapshot(store, tenant_key, departments, users, relations)

        logger.info(
            "Directory sync complete (account=%s, %d depts, %d users, %d relations)",
            account.account_id,
            len(departments),
            len(users),
            len(relations),
        )
        return True


class DirectorySyncService:
    """Periodic directory sync per account: once on start, then every interval."""

    def __init__(
        self,
        synchronizer: DirectorySynchronizer,
        coordinator: Coordinator,
        schedule_extraction: Callable[[ResolvedAccount], bool],
    ):
        self._synchronizer = synchronizer
        self._coordinator = coordinator
        self._schedule_extraction = schedule_extraction
        self._timers: dict[str, asyncio.Task] = {}

    def trigger(self, account: ResolvedAccount) -> bool:
        return self._coordinator.directory.trigger(
            account.account_id, lambda: self._synchronizer.run(account)
        )

    def start(self, accounts: list[ResolvedAccount]) -> None:
        for account in accounts:
            if not account.enabled or account.store_url is None:
                continue
            # Resources left `ready` by a previous process are picked up here.
            self._schedule_extraction(account)
            if not account.config.directory_sync.enabled or account.account_id in self._timers:
                continue
            interval_s = max(10, account.config.directory_sync.interval_minutes) * 60
            self._timers[account.account_id] = asyncio.create_task(self._loop(account, interval_s))

    async def _loop(self, account: ResolvedAccount, interval_s: float) -> None:
        while True:
            self.trigger(account)
            await asyncio.sleep(interval_s)

    async def stop(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
