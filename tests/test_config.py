"""Tests for settings and account resolution."""

import pytest
from pydantic import ValidationError

from cips.config import (
    AccountConfig,
    DirectorySyncConfig,
    Settings,
    normalize_db_url,
    normalize_table_prefix,
    resolve_account,
    resolve_accounts,
)


def test_normalize_db_url_adds_asyncpg_driver():
    assert normalize_db_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
    assert normalize_db_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
    assert normalize_db_url("mysql+aiomysql://u:p@h/db") == "mysql+aiomysql://u:p@h/db"


@pytest.mark.parametrize("raw,expected", [("cips_", "cips_"), ("  t1_ ", "t1_"), ("bad-prefix", ""), (None, "")])
def test_normalize_table_prefix(raw, expected):
    assert normalize_table_prefix(raw) == expected


def test_no_accounts_means_single_default(app_settings):
    (account,) = resolve_accounts(app_settings)
    assert account.account_id == "default"
    assert account.store_url == app_settings.database_url


def test_accounts_sorted_and_inherit_globals(app_settings):
    app_settings.app_id = "cli_global"
    app_settings.accounts = {
        "zeta": AccountConfig(),
        "alpha": AccountConfig(app_id="cli_alpha", store={"url": "postgres://u:p@h/alpha"}),
    }

    alpha, zeta = resolve_accounts(app_settings)

    assert (alpha.account_id, zeta.account_id) == ("alpha", "zeta")
    assert alpha.app_id == "cli_alpha"
    assert zeta.app_id == "cli_global"
    assert alpha.store_url == "postgresql+asyncpg://u:p@h/alpha"


def test_tenant_key_precedence(app_settings):
    configured = resolve_account(app_settings, "acct", AccountConfig(tenant_key="t-conf"))
    bare = resolve_account(app_settings, "acct", AccountConfig())

    assert configured.tenant_key("t-event") == "t-event"
    assert configured.tenant_key() == "t-conf"
    assert bare.tenant_key("  ") == "acct"


def test_resource_limit_in_bytes(app_settings):
    account = resolve_account(app_settings, "acct", AccountConfig(resource_max_mb=5))
    assert account.max_resource_bytes == 5 * 1024 * 1024


def test_directory_interval_has_a_floor():
    with pytest.raises(ValidationError):
        DirectorySyncConfig(interval_minutes=5)


def test_accounts_from_environment(monkeypatch):
    monkeypatch.setenv("CIPS_ACCOUNTS", '{"main": {"tenant_key": "t-main", "resource_max_mb": 20}}')
    monkeypatch.setenv("CIPS_DATABASE_URL", "postgres://u:p@h/db")

    loaded = Settings()

    assert loaded.database_url == "postgresql+asyncpg://u:p@h/db"
    assert loaded.accounts["main"].tenant_key == "t-main"
    assert loaded.accounts["main"].resource_max_mb == 20
