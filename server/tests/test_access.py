# pyright: reportMissingImports=false
# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.orm import Session

from enrollgate.db.models import Organization, RedemptionCode, User
from enrollgate.db.session import SessionLocal
from enrollgate.services import access, identity_store
from enrollgate.services.access import (
    EntitledOrganization,
    OrganizationCache,
    cached_organization_lookup,
    evaluate,
    has_entitlement,
    plan_satisfies,
)
from enrollgate.services.redemption import RedemptionEngine


def test_plan_satisfies_uses_plan_order() -> None:
    assert plan_satisfies("school-pro", None) is True
    assert plan_satisfies(None, None) is True
    assert plan_satisfies(None, "free") is False
    assert plan_satisfies("school-pro", "school-basic") is True
    assert plan_satisfies("school-basic", "school-pro") is False
    assert plan_satisfies("custom", "custom") is True
    assert plan_satisfies("custom", "free") is False
    assert plan_satisfies("district", "unknown-tier") is False
    assert plan_satisfies("gold", "silver", ["bronze", "silver", "gold"]) is True


def test_has_entitlement_requires_binding() -> None:
    unbound = User(email="a@example.com")
    bound = User(email="b@example.com", organization_id="org-1")

    assert has_entitlement(None) is False
    assert has_entitlement(unbound) is False
    assert has_entitlement(bound) is True
    assert has_entitlement(bound, organization_plan="free", required_plan="district") is False


def _seed() -> str:
    with SessionLocal() as db:
        org = Organization(name="Oakwood High", plan="school-basic")
        db.add(org)
        db.flush()
        db.add(RedemptionCode(code="EVAL-1", organization_id=org.id))
        db.add(User(email="eval@example.com"))
        db.commit()
        return org.id


def test_evaluate_reads_binding_fresh_in_the_same_session() -> None:
    org_id = _seed()

    with SessionLocal() as reader:
        before = evaluate(reader, "eval@example.com")
        assert before.has_entitlement is False
        assert before.status == "no-access"
        assert before.organization is None
        # expire_on_commit=False: the unbound user stays in the reader's identity map.
        reader.commit()

        with SessionLocal() as writer:
            _ = RedemptionEngine().redeem(writer, "EVAL-1", "eval@example.com")

        after = evaluate(reader, "eval@example.com")

    assert after.has_entitlement is True
    assert after.status == "org-member"
    assert after.organization == EntitledOrganization(id=org_id, name="Oakwood High", plan="school-basic")


def test_evaluate_uses_injected_lookup_for_organization_only() -> None:
    org_id = _seed()
    with SessionLocal() as db:
        _ = RedemptionEngine().redeem(db, "EVAL-1", "eval@example.com")

    seen: list[str] = []

    def _lookup(db: Session, organization_id: str) -> EntitledOrganization | None:
        seen.append(organization_id)
        return EntitledOrganization(id=organization_id, name="Cached Name", plan="district")

    with SessionLocal() as db:
        ent = evaluate(db, "eval@example.com", required_plan="district", organization_lookup=_lookup)

    assert seen == [org_id]
    assert ent.has_entitlement is True
    assert ent.organization is not None and ent.organization.name == "Cached Name"


def test_load_organization_missing_is_none() -> None:
    with SessionLocal() as db:
        assert access.load_organization(db, "does-not-exist") is None


def test_create_if_absent_normalizes_and_is_idempotent() -> None:
    with SessionLocal() as db:
        first = identity_store.create_if_absent(db, "  New.Person@Example.com ")
        second = identity_store.create_if_absent(db, "new.person@example.com")

    assert first.id == second.id
    assert first.email == "new.person@example.com"
    assert first.organization_id is None


def test_bind_entity_only_binds_unbound_users() -> None:
    with SessionLocal() as db:
        org_a = Organization(name="A")
        org_b = Organization(name="B")
        user = User(email="bind@example.com")
        db.add_all([org_a, org_b, user])
        db.commit()

        assert identity_store.bind_entity(db, user_id=user.id, organization_id=org_a.id) == 1
        db.commit()

        assert identity_store.bind_entity(db, user_id=user.id, organization_id=org_b.id) == 0
        assert identity_store.bind_entity(db, user_id="missing", organization_id=org_b.id) == 0
        db.rollback()

        stored = db.get(User, user.id, populate_existing=True)
        assert stored is not None
        assert stored.organization_id == org_a.id
        assert stored.onboarded is True


def test_cached_lookup_ignores_entries_loaded_before_a_plan_change() -> None:
    org_id = _seed()
    with SessionLocal() as db:
        _ = RedemptionEngine().redeem(db, "EVAL-1", "eval@example.com")

    cache = OrganizationCache(max_entries=8, ttl_seconds=3600)
    lookup = cached_organization_lookup(cache)

    with SessionLocal() as db:
        assert evaluate(db, "eval@example.com", required_plan="school-basic", organization_lookup=lookup).has_entitlement
        stamp = db.get(Organization, org_id)
        assert stamp is not None
        # A load that raced the change and wrote the old plan under the new key.
        cache.set((org_id, stamp.updated_at), EntitledOrganization(id=org_id, name="Oakwood High", plan="district"))
        downgraded = evaluate(db, "eval@example.com", required_plan="district", organization_lookup=lookup)
    assert downgraded.has_entitlement is False
    assert downgraded.organization is not None and downgraded.organization.plan == "school-basic"

    with SessionLocal() as db:
        _ = db.execute(update(Organization).where(Organization.id == org_id).values(plan="free"))
        db.commit()

    with SessionLocal() as db:
        after = evaluate(db, "eval@example.com", required_plan="school-basic", organization_lookup=lookup)
    assert after.has_entitlement is False
    assert after.organization == EntitledOrganization(id=org_id, name="Oakwood High", plan="free")
    assert len(cache) == 2
