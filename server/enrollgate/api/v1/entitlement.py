# pyright: reportMissingImports=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from enrollgate.api.v1.deps import get_app_settings, get_organization_cache
from enrollgate.api.v1.redeem import EntityOut
from enrollgate.core.config import Settings
from enrollgate.core.errors import MissingIdentity
from enrollgate.db.session import get_db
from enrollgate.services.access import OrganizationCache, cached_organization_lookup, evaluate


router = APIRouter(tags=["entitlement"])


class EntitlementResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_entitlement: bool = Field(..., serialization_alias="hasEntitlement")
    status: str
    entity: EntityOut | None = None


@router.get(
    "/entitlement",
    response_model=EntitlementResponse,
    response_model_exclude_none=True,
    operation_id="get_entitlement",
)
def get_entitlement(
    identity: str | None = Query(None, max_length=320),
    required_plan: str | None = Query(None, max_length=50),
    db: Session = Depends(get_db),
    s: Settings = Depends(get_app_settings),
    cache: OrganizationCache = Depends(get_organization_cache),
) -> EntitlementResponse:
    if identity is None or identity.strip() == "":
        raise MissingIdentity()

    ent = evaluate(
        db,
        identity,
        required_plan=required_plan,
        plan_order=s.plan_order,
        organization_lookup=cached_organization_lookup(cache),
    )
    entity = None
    if ent.organization is not None:
        entity = EntityOut(name=ent.organization.name, plan=ent.organization.plan)
    return EntitlementResponse(
        has_entitlement=ent.has_entitlement, status=ent.status, entity=entity
    )
