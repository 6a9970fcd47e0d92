"""HTTP client for the messaging platform's open API."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar
from urllib.parse import quote

import httpx

from cips.config import ResolvedAccount
from cips.errors import PlatformApiError, PlatformAuthError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAGE_SIZE = 50
_TOKEN_REFRESH_MARGIN_S = 60.0
_ITEM_KEYS = ("items", "user_list", "department_list", "users", "departments", "members")
_PAGE_TOKEN_KEYS = ("page_token", "next_page_token", "pageToken")


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    has_more: bool = False
    next_page_token: str | None = None


def coerce_page(data: Any) -> Page[dict[str, Any]]:
    """Normalize the list envelopes the platform uses across endpoints."""
    if not isinstance(data, dict):
        return Page()
    items_raw = None
    for key in _ITEM_KEYS:
        if data.get(key) is not None:
            items_raw = data[key]
            break
    items = [item for item in items_raw if isinstance(item, dict)] if isinstance(items_raw, list) else []
    has_more = bool(data.get("has_more", data.get("hasMore", False)))
    next_token = None
    for key in _PAGE_TOKEN_KEYS:
        value = data.get(key)
        if isinstance(value, str):
            next_token = value
            break
    return Page(items=items, has_more=has_more, next_page_token=next_token)


async def collect_all_pages(fetch_page: Callable[[str | None], Awaitable[Page[T]]]) -> list[T]:
    """Follow page tokens until the platform reports no more pages."""
    items: list[T] = []
    page_token: str | None = None
    has_more = True
    while has_more:
        page = await fetch_page(page_token)
        items.extend(page.items)
        page_token = page.next_page_token
        has_more = page.has_more and bool(page_token)
    return items


@dataclass
class DownloadStream:
    """Attachment body with the length the platform declared, if any."""

    content_length: int | None
    chunks: AsyncIterator[bytes]


@dataclass(frozen=True)
class DirectoryQuery:
    user_id_type: str = "open_id"
    department_id_type: str = "department_id"


class Platform(Protocol):
    """What the engine consumes from the messaging platform."""

    async def list_department_children(
        self, parent_id: str, page_token: str | None, query: DirectoryQuery
    ) -> Page[dict[str, Any]]: ...

    async def get_department(self, department_id: str, query: DirectoryQuery) -> dict[str, Any] | None: ...

    async def list_department_users(
        self, department_id: str, page_token: str | None, query: DirectoryQuery
    ) -> Page[dict[str, Any]]: ...

    async def get_chat(self, chat_id: str) -> dict[str, Any] | None: ...

    async def list_chat_members(self, chat_id: str, page_token: str | None) -> Page[dict[str, Any]]: ...

    def download(self, message_id: str, file_key: str, kind: str) -> Any:
        """Async context manager yielding a DownloadStream."""
        ...

    async def aclose(self) -> None: ...


def _unwrap(data: Any, *keys: str) -> dict[str, Any] | None:
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if isinstance(value, dict):
            return value
    return data


def _parse_length(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


class PlatformClient:
    """Open API client for one account (internal app credentials)."""

    def __init__(self, account: ResolvedAccount, client: httpx.AsyncClient | None = None, timeout_s: float = 30.0):
        self._account = account
        self._client = client
        self._timeout_s = timeout_s
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per account for connection pooling.
        self._client = httpx.AsyncClient(base_url=self._account.base_url, timeout=self._timeout_s)
        return self._client

    async def _tenant_access_token(self) -> str:
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            if not self._account.app_id or not self._account.app_secret:
                raise PlatformAuthError(f"account {self._account.account_id} has no app credentials")
            response = await self._get_client().post(
                "/open-apis/auth/v3/tenant_access_token/internal",
                json={"app_id": self._account.app_id, "app_secret": self._account.app_secret},
            )
            body = self._decode(response)
            token = body.get("tenant_access_token")
            if not isinstance(token, str) or not token:
                raise PlatformAuthError("Platform returned no tenant access token")
            expire = body.get("expire")
            ttl = float(expire) if isinstance(expire, (int, float)) else 7200.0
            self._token = token
            self._token_expires_at = time.monotonic() + max(0.0, ttl - _TOKEN_REFRESH_MARGIN_S)
            return token

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if response.status_code in {401, 403}:
            raise PlatformAuthError(
                f"Platform auth error ({response.status_code})", status_code=response.status_code
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise PlatformApiError(
                f"Platform returned non-JSON response ({response.status_code})",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise PlatformApiError("Platform returned unexpected body", status_code=response.status_code)
        code = body.get("code")
        if isinstance(code, int) and code != 0:
            msg = body.get("msg")
            suffix = f": {msg}" if msg else ""
            raise PlatformApiError(f"Platform API error {code}{suffix}", code=code, status_code=response.status_code)
        if response.status_code >= 400:
            raise PlatformApiError(
                f"Platform API error: {response.status_code}", status_code=response.status_code
            )
        return body

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call an endpoint and return its `data` object."""
        token = await self._tenant_access_token()
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        response = await self._get_client().request(
            method,
            path,
            params=clean,
            json=json,
            headers={"Authorization": f"Bearer {token}"},
        )
        body = self._decode(response)
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    async def list_department_children(
        self, parent_id: str, page_token: str | None, query: DirectoryQuery
    ) -> Page[dict[str, Any]]:
        data = await self.request(
            "GET",
            f"/open-apis/contact/v3/departments/{quote(parent_id, safe='')}/children",
            params={
                "page_size": PAGE_SIZE,
                "page_token": page_token,
                "department_id_type": query.department_id_type,
                "user_id_type": query.user_id_type,
            },
        )
        return coerce_page(data)

    async def get_department(self, department_id: str, query: DirectoryQuery) -> dict[str, Any] | None:
        data = await self.request(
            "GET",
            f"/open-apis/contact/v3/departments/{quote(department_id, safe='')}",
            params={
                "department_id_type": query.department_id_type,
                "user_id_type": query.user_id_type,
            },
        )
        return _unwrap(data, "department", "data")

    async def list_department_users(
        self, department_id: str, page_token: str | None, query: DirectoryQuery
    ) -> Page[dict[str, Any]]:
        data = await self.request(
            "GET",
            "/open-apis/contact/v3/users",
            params={
                "department_id": department_id,
                "page_size": PAGE_SIZE,
                "page_token": page_token,
                "user_id_type": query.user_id_type,
                "department_id_type": query.department_id_type,
                "fetch_child": "false",
            },
        )
        return coerce_page(data)

    async def get_chat(self, chat_id: str) -> dict[str, Any] | None:
        data = await self.request("GET", f"/open-apis/im/v1/chats/{quote(chat_id, safe='')}")
        return _unwrap(data, "chat", "data")

    async def list_chat_members(self, chat_id: str, page_token: str | None) -> Page[dict[str, Any]]:
        data = await self.request(
            "GET",
            f"/open-apis/im/v1/chats/{quote(chat_id, safe='')}/members",
            params={"page_size": PAGE_SIZE, "page_token": page_token, "member_id_type": "open_id"},
        )
        return coerce_page(data)

    @asynccontextmanager
    async def download(self, message_id: str, file_key: str, kind: str) -> AsyncIterator[DownloadStream]:
        """Stream a message attachment without buffering the body."""
        token = await self._tenant_access_token()
        path = (
            f"/open-apis/im/v1/messages/{quote(message_id, safe='')}"
            f"/resources/{quote(file_key, safe='')}"
        )
        async with self._get_client().stream(
            "GET",
            path,
            params={"type": kind},
            headers={"Authorization": f"Bearer {token}"},
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                self._decode(response)
            yield DownloadStream(
                content_length=_parse_length(response.headers.get("content-length")),
                chunks=response.aiter_bytes(),
            )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
