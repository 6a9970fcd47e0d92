"""Shared fixtures: SQLite stores, accounts and in-memory platform/capability fakes."""

import pytest

from cips.config import AccountConfig, ResolvedAccount, Settings, resolve_account
from cips.database import StoreRegistry
from cips.engine.coordinator import Coordinator
from cips.engine.events import EventBus
from cips.extraction.base import Capabilities
from fakes import TENANT, FakeDocuments, FakeOcr, FakePlatform, FakeTranscriber


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def capabilities() -> Capabilities:
    return Capabilities(ocr=FakeOcr(text="hello"), asr=FakeTranscriber(), documents=FakeDocuments())


@pytest.fixture
def app_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cips.db'}",
        state_dir=str(tmp_path / "state"),
        openai_api_key=None,
        admin_api_key="admin-secret",
    )


@pytest.fixture
def make_account(app_settings):
    def _make(account_id: str = "acct", **overrides) -> ResolvedAccount:
        overrides.setdefault("tenant_key", TENANT)
        return resolve_account(app_settings, account_id, AccountConfig(**overrides))

    return _make


@pytest.fixture
def account(make_account) -> ResolvedAccount:
    return make_account()


@pytest.fixture
async def stores():
    registry = StoreRegistry(echo=False)
    yield registry
    await registry.dispose()


@pytest.fixture
async def store(stores, account):
    return await stores.open(account)


@pytest.fixture
def coordinator() -> Coordinator:
    return Coordinator()


@pytest.fixture
def events() -> EventBus:
    return EventBus()
