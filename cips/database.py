"""Database connection pools and lazy schema creation per store."""

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from cips.config import ResolvedAccount, settings
from cips.errors import StoreNotConfiguredError
from cips.models import Tables, build_tables

logger = logging.getLogger(__name__)

_SSL_ALIASES = {"true": "require", "1": "require", "false": "disable", "0": "disable"}


def get_engine_url_and_connect_args(database_url: str) -> tuple[str, dict]:
    """Move sslmode/ssl from the URL query into connect_args (asyncpg doesn't accept them in the URL)."""
    url = database_url
    connect_args = {}
    if "sslmode=" in url or "ssl=" in url:
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        modes = query.pop("sslmode", []) + query.pop("ssl", [])
        new_query = urlencode(query, doseq=True)
        url = urlunparse(parsed._replace(query=new_query))
        if modes:
            # asyncpg takes libpq mode names; verify-ca/verify-full check the server certificate.
            connect_args["ssl"] = _SSL_ALIASES.get(modes[0].lower(), modes[0])
    return url, connect_args


@dataclass(frozen=True)
class StoreContext:
    """A resolved store: shared engine plus the prefixed table namespace."""

    key: str
    engine: AsyncEngine
    tables: Tables

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name


class StoreRegistry:
    """Owns engine lifecycle and memoizes schema creation.

    Engines are shared by every account resolving to the same physical target
    (url including credentials). Schema creation is memoized per target and
    table prefix; concurrent first callers await one shared task and a failed
    creation is forgotten so the next caller retries the DDL.
    """

    def __init__(self, echo: bool | None = None):
        self._echo = settings.log_level == "DEBUG" if echo is None else echo
        self._engines: dict[str, AsyncEngine] = {}
        self._tables: dict[str, Tables] = {}
        self._schema_ready: dict[str, asyncio.Task] = {}

    def _engine_for(self, url: str, pool_size: int) -> tuple[str, AsyncEngine]:
        db_url, connect_args = get_engine_url_and_connect_args(url)
        target = make_url(db_url).render_as_string(hide_password=False)
        engine = self._engines.get(target)
        if engine is None:
            kwargs = {}
            if not target.startswith("sqlite"):
                kwargs["pool_size"] = pool_size
            engine = create_async_engine(
                db_url,
                echo=self._echo,
                connect_args=connect_args,
                **kwargs,
            )
            self._engines[target] = engine
        return target, engine

    def resolve(self, account: ResolvedAccount) -> StoreContext | None:
        """Store for an account, or None when the account has no store configured."""
        if not account.store_url:
            return None
        target, engine = self._engine_for(account.store_url, account.pool_size)
        tables = self._tables.get(account.table_prefix)
        if tables is None:
            tables = build_tables(account.table_prefix)
            self._tables[account.table_prefix] = tables
        return StoreContext(key=f"{target}:{account.table_prefix}", engine=engine, tables=tables)

    async def ensure_schema(self, context: StoreContext) -> None:
        task = self._schema_ready.get(context.key)
        if task is None:
            task = asyncio.ensure_future(self._create_schema(context))
            self._schema_ready[context.key] = task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            raise
        except Exception:
            if self._schema_ready.get(context.key) is task:
                del self._schema_ready[context.key]
            raise

    async def _create_schema(self, context: StoreContext) -> None:
        try:
            async with context.engine.begin() as conn:
                await conn.run_sync(context.tables.metadata.create_all)
        except Exception:
            logger.exception("Schema init failed for store %s", _redacted(context.key))
            raise
        logger.info("Schema ready for store %s", _redacted(context.key))

    async def open(self, account: ResolvedAccount) -> StoreContext:
        """Resolve the account's store and make sure its tables exist."""
        context = self.resolve(account)
        if context is None:
            raise StoreNotConfiguredError(f"account {account.account_id} has no store configured")
        await self.ensure_schema(context)
        return context

    async def dispose(self) -> None:
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()
        self._schema_ready.clear()


def _redacted(key: str) -> str:
    target, _, prefix = key.rpartition(":")
    try:
        shown = make_url(target).render_as_string(hide_password=True)
    except Exception:  # noqa: BLE001 - only used for log text
        shown = "<store>"
    return f"{shown}:{prefix}" if prefix else shown
