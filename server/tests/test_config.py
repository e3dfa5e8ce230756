# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false

from __future__ import annotations

import pytest

from enrollgate.core.config import Settings


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in [
        "ENV",
        "ADMIN_SYNC_SECRET",
        "DATABASE_URL",
        "PLAN_ORDER",
        "REDEEM_TIMEOUT_SECONDS",
        "ENTITLEMENT_CACHE_MAX_ENTRIES",
        "REDEEM_RATE_LIMIT_ENABLED",
        "REDEEM_RATE_LIMIT_MAX_FAILURES",
        "REDEEM_RATE_LIMIT_WINDOW_SECONDS",
    ]:
        monkeypatch.delenv(key, raising=False)


def test_prod_requires_admin_secret_and_postgres(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("ENV", "prod")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./dev.db")

    with pytest.raises(Exception) as excinfo:
        _ = Settings()
    msg = str(excinfo.value)
    assert "ADMIN_SYNC_SECRET" in msg
    assert "sqlite is dev-only" in msg


def test_prod_with_secret_and_postgres_ok(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("ADMIN_SYNC_SECRET", "sync-secret-set-in-prod")
    monkeypatch.setenv("POSTGRES_HOST", "db.internal")

    s = Settings()
    assert s.admin_sync_secret == "sync-secret-set-in-prod"
    assert s.sqlalchemy_database_uri.startswith("postgresql+psycopg://")
    assert "@db.internal:5432/" in s.sqlalchemy_database_uri


def test_plan_order_accepts_comma_and_json(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)

    monkeypatch.setenv("PLAN_ORDER", "free, basic ,pro")
    assert Settings().plan_order == ["free", "basic", "pro"]

    monkeypatch.setenv("PLAN_ORDER", '["bronze", "silver"]')
    assert Settings().plan_order == ["bronze", "silver"]


def test_invalid_limits_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)

    monkeypatch.setenv("REDEEM_TIMEOUT_SECONDS", "-1")
    with pytest.raises(Exception, match="REDEEM_TIMEOUT_SECONDS"):
        _ = Settings()

    monkeypatch.delenv("REDEEM_TIMEOUT_SECONDS")
    monkeypatch.setenv("PLAN_ORDER", "free,free")
    with pytest.raises(Exception, match="PLAN_ORDER"):
        _ = Settings()

    monkeypatch.delenv("PLAN_ORDER")
    monkeypatch.setenv("REDEEM_RATE_LIMIT_MAX_FAILURES", "-3")
    with pytest.raises(Exception, match="REDEEM_RATE_LIMIT_MAX_FAILURES"):
        _ = Settings()


def test_rate_limit_defaults_and_env(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    s = Settings()
    assert s.redeem_rate_limit_enabled is True
    assert s.redeem_rate_limit_max_failures == 10
    assert s.redeem_rate_limit_window_seconds == 300

    monkeypatch.setenv("REDEEM_RATE_LIMIT_ENABLED", "false")
    assert Settings().redeem_rate_limit_enabled is False
