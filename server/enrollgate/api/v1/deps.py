# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

import hmac
from typing import cast

from fastapi import Depends, Header, Request

from enrollgate.core.config import Settings
from enrollgate.core.errors import Forbidden
from enrollgate.services.access import OrganizationCache
from enrollgate.services.rate_limit import RedemptionRateLimiter
from enrollgate.services.redemption import RedemptionEngine


def get_app_settings(request: Request) -> Settings:
    return cast(Settings, request.app.state.settings)


def get_redemption_engine(request: Request) -> RedemptionEngine:
    return cast(RedemptionEngine, request.app.state.redemption_engine)


def get_organization_cache(request: Request) -> OrganizationCache:
    return cast(OrganizationCache, request.app.state.organization_cache)


def get_rate_limiter(request: Request) -> RedemptionRateLimiter:
    return cast(RedemptionRateLimiter, request.app.state.rate_limiter)


def require_admin_secret(
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
    s: Settings = Depends(get_app_settings),
) -> None:
    expected = s.admin_sync_secret.strip()
    if expected == "" or x_admin_secret is None:
        raise Forbidden()
    if not hmac.compare_digest(x_admin_secret.encode("utf-8"), expected.encode("utf-8")):
        raise Forbidden()
