# pyright: reportUnusedFunction=false

from __future__ import annotations

import uuid

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import RequestResponseEndpoint
from starlette.middleware.trustedhost import TrustedHostMiddleware

from enrollgate.api.error_handlers import register_error_handlers, unhandled_error_response
from enrollgate.api.v1.router import api_router
from enrollgate.core.config import Settings, get_settings, settings
from enrollgate.core.logging import configure_logging, request_id_ctx_var
from enrollgate.core.version import VERSION_HEADER, get_app_version
from enrollgate.db import session as db_session
from enrollgate.metrics.prometheus import metrics_payload
from enrollgate.middleware.lockdown import LockdownMiddleware
from enrollgate.services.access import OrganizationCache
from enrollgate.services.rate_limit import RedemptionRateLimiter
from enrollgate.services.redemption import RedemptionEngine


def create_app(app_settings: Settings | None = None) -> FastAPI:
    s = app_settings or get_settings()

    configure_logging(s.log_level)

    app_version = get_app_version()
    app = FastAPI(title="enrollgate-server", version=app_version)

    app.state.settings = s
    # Apps on another database URL own their engine and pool.
    if s.sqlalchemy_database_uri == settings.sqlalchemy_database_uri:
        app.state.db_engine = db_session.engine
        app.state.session_factory = db_session.SessionLocal
    else:
        app.state.db_engine = db_session.build_engine(s)
        app.state.session_factory = db_session.build_session_factory(app.state.db_engine)
    app.state.redemption_engine = RedemptionEngine(timeout_s=s.redeem_timeout_seconds)
    app.state.organization_cache = OrganizationCache(
        max_entries=s.entitlement_cache_max_entries,
        ttl_seconds=s.entitlement_cache_ttl_seconds,
    )
    app.state.rate_limiter = RedemptionRateLimiter(
        enabled=s.redeem_rate_limit_enabled,
        max_failures=s.redeem_rate_limit_max_failures,
        window_seconds=s.redeem_rate_limit_window_seconds,
    )

    register_error_handlers(app)

    if s.lockdown:
        app.add_middleware(
            LockdownMiddleware,
            allow_paths=(f"{s.api_v1_prefix}/health",),
        )

    if s.trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=s.trusted_hosts)

    if s.cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=s.cors_allowed_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
            max_age=600,
        )

    @app.middleware("http")
    async def request_context_and_security_headers(
        request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        token = request_id_ctx_var.set(rid)
        try:
            response = await call_next(request)
        except Exception as exc:
            response = unhandled_error_response(request, exc)
        finally:
            request_id_ctx_var.reset(token)

        response.headers["X-Request-Id"] = rid
        response.headers[VERSION_HEADER] = app_version
        _ = response.headers.setdefault("X-Content-Type-Options", "nosniff")
        _ = response.headers.setdefault("X-Frame-Options", "DENY")
        _ = response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response

    app.include_router(api_router, prefix=s.api_v1_prefix)

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics() -> Response:
        payload, content_type = metrics_payload()
        return Response(content=payload, media_type=content_type)

    return app


app = create_app(settings)


__all__ = ["app", "create_app"]
