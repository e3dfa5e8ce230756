# pyright: reportMissingImports=false
# pyright: reportImplicitOverride=false
# pyright: reportIncompatibleVariableOverride=false
# pyright: reportUnknownVariableType=false
from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from enrollgate.db.base import Base


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class Organization(Base):
    """The granting entity a redemption code unlocks membership in."""

    __tablename__: str = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    plan: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )

    codes: Mapped[list["RedemptionCode"]] = relationship(
        "RedemptionCode",
        back_populates="organization",
        passive_deletes=True,
    )


class User(Base):
    __tablename__: str = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)

    # Bound entity; set once, by redemption only.
    organization_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        index=True,
        nullable=True,
    )
    onboarded: Mapped[bool] = mapped_column(
        Boolean(), nullable=False, default=False, server_default=false()
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)

    organization: Mapped[Organization | None] = relationship("Organization")


class RedemptionCode(Base):
    __tablename__: str = "redemption_codes"
    __table_args__: tuple[object, ...] = (
        CheckConstraint(
            "redeemed = false OR redeemed_by IS NOT NULL",
            name="redeemed_has_claimant",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        index=True,
        nullable=False,
    )

    redeemed: Mapped[bool] = mapped_column(
        Boolean(), nullable=False, default=False, server_default=false()
    )
    redeemed_by: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        index=True,
        nullable=True,
    )
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)

    organization: Mapped[Organization] = relationship("Organization", back_populates="codes")


class RedemptionRateLimit(Base):
    """Failed redemption attempts per client address or identity, within a window."""

    __tablename__: str = "redemption_rate_limits"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("failures >= 0", name="failures_non_negative"),
    )

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    failures: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    reset_at: Mapped[datetime] = mapped_column(DateTime(), index=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )
