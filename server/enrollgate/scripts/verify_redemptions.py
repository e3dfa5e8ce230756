"""Audit stored redemption state against the engine's invariants.

Prints one tab-separated line per check and exits 1 when any check finds rows.
"""

from __future__ import annotations

import argparse
from collections.abc import Callable
from dataclasses import dataclass
import sys

from sqlalchemy import Select, and_, func, select
from sqlalchemy.orm import Session, aliased

from enrollgate.db.models import RedemptionCode, User
from enrollgate.db.session import SessionLocal


@dataclass(frozen=True)
class InvariantCheck:
    name: str
    build: Callable[[], Select[tuple[int]]]


def _redeemed_without_claimant() -> Select[tuple[int]]:
    return (
        select(func.count())
        .select_from(RedemptionCode)
        .where(RedemptionCode.redeemed.is_(True), RedemptionCode.redeemed_by.is_(None))
    )


def _claimant_on_unredeemed() -> Select[tuple[int]]:
    return (
        select(func.count())
        .select_from(RedemptionCode)
        .where(RedemptionCode.redeemed.is_(False), RedemptionCode.redeemed_by.is_not(None))
    )


def _claimant_missing() -> Select[tuple[int]]:
    u = aliased(User)
    return (
        select(func.count())
        .select_from(RedemptionCode)
        .outerjoin(u, u.id == RedemptionCode.redeemed_by)
        .where(RedemptionCode.redeemed_by.is_not(None), u.id.is_(None))
    )


def _claimant_bound_elsewhere() -> Select[tuple[int]]:
    u = aliased(User)
    return (
        select(func.count())
        .select_from(RedemptionCode)
        .join(u, u.id == RedemptionCode.redeemed_by)
        .where(
            RedemptionCode.redeemed.is_(True),
            u.organization_id.is_distinct_from(RedemptionCode.organization_id),
        )
    )


def _bound_without_code() -> Select[tuple[int]]:
    rc = aliased(RedemptionCode)
    return (
        select(func.count())
        .select_from(User)
        .outerjoin(
            rc,
            and_(
                rc.redeemed_by == User.id,
                rc.organization_id == User.organization_id,
                rc.redeemed.is_(True),
            ),
        )
        .where(User.organization_id.is_not(None), rc.id.is_(None))
    )


CHECKS: list[InvariantCheck] = [
    InvariantCheck("redeemed code has no claimant", _redeemed_without_claimant),
    InvariantCheck("unredeemed code has a claimant", _claimant_on_unredeemed),
    InvariantCheck("redeemed_by -> users.id", _claimant_missing),
    InvariantCheck("claimant bound to another organization", _claimant_bound_elsewhere),
    InvariantCheck("bound user without a redeemed code", _bound_without_code),
]


def run_checks(db: Session) -> list[tuple[str, int]]:
    return [(chk.name, int(db.execute(chk.build()).scalar_one())) for chk in CHECKS]


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Verify redemption invariants in the configured database.")
    _ = ap.parse_args(argv)

    db = SessionLocal()
    try:
        results = run_checks(db)
    finally:
        db.close()

    failed = 0
    for name, count in results:
        if count != 0:
            failed += 1
        print(f"invariant\tcheck={name}\tcount={count}")

    if failed:
        print(f"ERROR: invariant_checks_failed={failed}", file=sys.stderr)
        return 1
    print("verify_redemptions_ok=1")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
