from __future__ import annotations

from datetime import datetime
from typing import cast

from sqlalchemy import CursorResult, select, update
from sqlalchemy.orm import Session

from enrollgate.db.models import RedemptionCode


def find_by_code(db: Session, code: str) -> RedemptionCode | None:
    return db.execute(
        select(RedemptionCode).where(RedemptionCode.code == code)
    ).scalar_one_or_none()


def claim(db: Session, *, code_id: str, user_id: str, now: datetime) -> int:
    """Mark a code redeemed by ``user_id`` if nobody has claimed it yet.

    One conditional UPDATE; returns the affected row count. 0 means a
    concurrent transaction already claimed it.
    """
    stmt = (
        update(RedemptionCode)
        .where(RedemptionCode.id == code_id, RedemptionCode.redeemed.is_(False))
        .values(redeemed=True, redeemed_by=user_id, redeemed_at=now)
        .execution_options(synchronize_session=False)
    )
    result = cast(CursorResult[object], db.execute(stmt))
    return int(result.rowcount)
