# pyright: reportMissingImports=false
from __future__ import annotations

from fastapi import APIRouter

from enrollgate.api.v1.admin_codes import router as admin_codes_router
from enrollgate.api.v1.entitlement import router as entitlement_router
from enrollgate.api.v1.health import router as health_router
from enrollgate.api.v1.redeem import router as redeem_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(redeem_router)
api_router.include_router(entitlement_router)
api_router.include_router(admin_codes_router)
