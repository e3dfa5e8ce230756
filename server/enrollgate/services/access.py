from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Literal

from sqlalchemy import select
from sqlalchemy.orm import Session

from enrollgate.db.models import Organization, User
from enrollgate.services import identity_store
from enrollgate.services.ttl_cache import TTLCache


AccessStatus = Literal["org-member", "no-access"]

DEFAULT_PLAN_ORDER: tuple[str, ...] = ("free", "school-basic", "school-pro", "district")


@dataclass(frozen=True)
class EntitledOrganization:
    id: str
    name: str
    plan: str | None


@dataclass(frozen=True)
class Entitlement:
    has_entitlement: bool
    status: AccessStatus
    organization: EntitledOrganization | None = None


OrganizationLookup = Callable[[Session, str], EntitledOrganization | None]

# Keyed by (organization id, updated_at): a plan change made anywhere moves the key.
OrganizationCache = TTLCache[tuple[str, datetime], EntitledOrganization]


def plan_satisfies(
    plan: str | None,
    required_plan: str | None,
    plan_order: Sequence[str] = DEFAULT_PLAN_ORDER,
) -> bool:
    """Whether ``plan`` ranks at or above ``required_plan``; unknown plans rank lowest."""
    if required_plan is None:
        return True
    if plan is None:
        return False
    if plan == required_plan:
        return True
    try:
        need = plan_order.index(required_plan)
    except ValueError:
        return False
    try:
        have = plan_order.index(plan)
    except ValueError:
        return False
    return have >= need


def has_entitlement(
    user: User | None,
    *,
    organization_plan: str | None = None,
    required_plan: str | None = None,
    plan_order: Sequence[str] = DEFAULT_PLAN_ORDER,
) -> bool:
    if user is None or user.organization_id is None:
        return False
    return plan_satisfies(organization_plan, required_plan, plan_order)


def load_organization(db: Session, organization_id: str) -> EntitledOrganization | None:
    org = db.get(Organization, organization_id, populate_existing=True)
    if org is None:
        return None
    return EntitledOrganization(id=org.id, name=org.name, plan=org.plan)


def cached_organization_lookup(cache: OrganizationCache) -> OrganizationLookup:
    """Organization lookup through ``cache`` that never decides on a stale plan.

    Each call reads the plan and ``updated_at`` fresh (one indexed row); only
    the rest of the details come from the cache, under a key that includes
    ``updated_at``. An entry loaded before a plan change therefore sits under
    an old key and is never served for the new one.
    """

    def _lookup(db: Session, organization_id: str) -> EntitledOrganization | None:
        stamp = db.execute(
            select(Organization.plan, Organization.updated_at).where(
                Organization.id == organization_id
            )
        ).one_or_none()
        if stamp is None:
            return None
        plan, updated_at = stamp
        org = cache.get_or_load(
            (organization_id, updated_at), lambda: load_organization(db, organization_id)
        )
        if org is not None and org.plan != plan:
            org = replace(org, plan=plan)
        return org

    return _lookup


def evaluate(
    db: Session,
    identity: str,
    *,
    required_plan: str | None = None,
    plan_order: Sequence[str] = DEFAULT_PLAN_ORDER,
    organization_lookup: OrganizationLookup = load_organization,
) -> Entitlement:
    """Entitlement for ``identity`` as currently stored.

    The user row is always read fresh so a redemption committed a moment ago
    is visible on the next call; only the organization details may come from
    ``organization_lookup`` (which can be cached).
    """
    user = identity_store.resolve(db, identity, fresh=True)
    if user is None or user.organization_id is None:
        return Entitlement(has_entitlement=False, status="no-access")

    org = organization_lookup(db, user.organization_id)
    plan = org.plan if org is not None else None
    ok = has_entitlement(
        user, organization_plan=plan, required_plan=required_plan, plan_order=plan_order
    )
    return Entitlement(
        has_entitlement=ok,
        status="org-member" if ok else "no-access",
        organization=org,
    )
