from __future__ import annotations

from typing import cast

from sqlalchemy import CursorResult, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from enrollgate.core.email import normalize_email
from enrollgate.db.models import User


def get(db: Session, user_id: str, *, fresh: bool = False) -> User | None:
    return db.get(User, user_id, populate_existing=fresh)


def find_by_contact(db: Session, address: str, *, fresh: bool = False) -> User | None:
    email = normalize_email(address)
    if email == "":
        return None
    stmt = select(User).where(User.email == email)
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def resolve(db: Session, identity: str, *, fresh: bool = False) -> User | None:
    """Identities containing ``@`` are contact addresses; anything else is a user id.

    ``fresh`` overwrites any copy already in the session's identity map.
    """
    ident = identity.strip()
    if ident == "":
        return None
    if "@" in ident:
        return find_by_contact(db, ident, fresh=fresh)
    return get(db, ident, fresh=fresh)


def create_if_absent(db: Session, address: str) -> User:
    """Registration-side helper; redemption never creates users."""
    email = normalize_email(address)
    if email == "":
        raise ValueError("address must be non-empty")

    existing = find_by_contact(db, email)
    if existing is not None:
        return existing

    user = User(email=email)
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        # Lost a unique-key race; the other writer's row wins.
        db.rollback()
        winner = find_by_contact(db, email)
        if winner is None:
            raise
        return winner
    db.commit()
    return user


def bind_entity(db: Session, *, user_id: str, organization_id: str) -> int:
    """Bind an unbound user to an organization; returns the affected row count.

    Conditional on ``organization_id IS NULL`` so a concurrent redemption by the
    same user cannot overwrite the first binding. 0 means the user was already
    bound (or does not exist).
    """
    stmt = (
        update(User)
        .where(User.id == user_id, User.organization_id.is_(None))
        .values(organization_id=organization_id, onboarded=True)
        .execution_options(synchronize_session=False)
    )
    result = cast(CursorResult[object], db.execute(stmt))
    return int(result.rowcount)
