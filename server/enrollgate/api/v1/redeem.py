# pyright: reportMissingImports=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from enrollgate.api.v1.deps import get_rate_limiter, get_redemption_engine
from enrollgate.core.errors import EnrollgateError, ErrorKind, RateLimited
from enrollgate.db.session import get_db
from enrollgate.metrics.prometheus import record_redemption
from enrollgate.services.rate_limit import (
    SCOPE_IDENTITY,
    SCOPE_IP,
    RedemptionRateLimiter,
    rate_limit_key,
)
from enrollgate.services.redemption import RedemptionEngine


logger = logging.getLogger(__name__)

router = APIRouter(tags=["redeem"])


class RedeemRequest(BaseModel):
    code: str | None = Field(None, max_length=128, examples=["ABC123"])
    identity: str | None = Field(None, max_length=320, examples=["user@example.com"])


class EntityOut(BaseModel):
    name: str
    plan: str | None = None


class RedeemResponse(BaseModel):
    ok: bool = True
    entity: EntityOut


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str


_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "missing_code / missing_identity / invalid_request"},
    404: {"model": ErrorResponse, "description": "code_not_found / identity_not_found"},
    409: {"model": ErrorResponse, "description": "already_redeemed / identity_already_bound"},
    429: {"model": ErrorResponse, "description": "rate_limited"},
    503: {"model": ErrorResponse, "description": "storage_unavailable / redemption_timeout"},
}

# Outcomes that count toward the failure limit: guessed codes and enumerated identities.
_COUNTED_KINDS = frozenset({ErrorKind.NOT_FOUND, ErrorKind.CONFLICT})


def _client_ip(request: Request) -> str | None:
    if request.client is None:
        return None
    return request.client.host


def _limit_keys(request: Request, identity: str | None) -> list[tuple[str, str]]:
    keys = [(SCOPE_IP, rate_limit_key(scope=SCOPE_IP, subject=_client_ip(request)))]
    if identity is not None and identity.strip() != "":
        keys.append((SCOPE_IDENTITY, rate_limit_key(scope=SCOPE_IDENTITY, subject=identity)))
    return keys


def _enforce_rate_limit(
    db: Session, limiter: RedemptionRateLimiter, keys: list[tuple[str, str]]
) -> None:
    for scope, key in keys:
        try:
            check = limiter.check(db, key=key)
        except SQLAlchemyError:
            db.rollback()
            logger.warning("redeem rate limit check failed scope=%s; allowing", scope, exc_info=True)
            return
        if check.blocked:
            db.rollback()
            logger.info(
                "redeem rate limited scope=%s retry_after=%s", scope, check.retry_after_seconds
            )
            record_redemption(outcome=RateLimited.code)
            raise RateLimited(check.retry_after_seconds)


def _record_failures(
    db: Session, limiter: RedemptionRateLimiter, keys: list[tuple[str, str]]
) -> None:
    for scope, key in keys:
        try:
            limiter.record_failure(db, key=key)
        except SQLAlchemyError:
            db.rollback()
            logger.warning("redeem rate limit update failed scope=%s", scope, exc_info=True)


# Blocking DB work: plain def so FastAPI runs it in the threadpool.
@router.post(
    "/redeem",
    response_model=RedeemResponse,
    responses=_ERROR_RESPONSES,
    operation_id="redeem_code",
)
def redeem(
    payload: RedeemRequest,
    request: Request,
    db: Session = Depends(get_db),
    engine: RedemptionEngine = Depends(get_redemption_engine),
    limiter: RedemptionRateLimiter = Depends(get_rate_limiter),
) -> RedeemResponse:
    keys = _limit_keys(request, payload.identity) if limiter.active else []
    _enforce_rate_limit(db, limiter, keys)
    try:
        result = engine.redeem(db, payload.code, payload.identity)
    except EnrollgateError as exc:
        if exc.kind in _COUNTED_KINDS:
            _record_failures(db, limiter, keys)
        raise
    return RedeemResponse(
        entity=EntityOut(name=result.organization.name, plan=result.organization.plan)
    )
