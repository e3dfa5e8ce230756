from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
import logging
from typing import Any, Literal, cast

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import CursorResult, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from enrollgate.core.logging import redact_code
from enrollgate.db.models import Organization, RedemptionCode, new_id, utcnow
from enrollgate.metrics.prometheus import record_provisioning


logger = logging.getLogger(__name__)

RecordOutcome = Literal["created", "updated", "unchanged", "skipped", "conflict", "failed"]


class ProvisioningRecord(BaseModel):
    """One input row. ``schoolName`` and ``name`` are accepted for older exports."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    code: str = Field(..., min_length=1, max_length=128)
    granting_entity_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        validation_alias=AliasChoices(
            "grantingEntityName", "granting_entity_name", "schoolName", "name"
        ),
    )
    plan: str | None = Field(None, max_length=50)

    @field_validator("code", "granting_entity_name", mode="before")
    @classmethod
    def _strip_required(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("plan", mode="before")
    @classmethod
    def _blank_plan_is_none(cls, v: object) -> object:
        if isinstance(v, str):
            s = v.strip()
            return s or None
        return v


@dataclass(frozen=True)
class RecordError:
    index: int
    outcome: RecordOutcome
    detail: str


@dataclass
class SyncReport:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    conflicts: int = 0
    failed: int = 0
    dry_run: bool = False
    errors: list[RecordError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            self.created + self.updated + self.unchanged + self.skipped + self.conflicts + self.failed
        )

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def count(self, outcome: RecordOutcome) -> None:
        if outcome == "conflict":
            self.conflicts += 1
        else:
            setattr(self, outcome, getattr(self, outcome) + 1)

    def to_dict(self) -> dict[str, object]:
        out = asdict(self)
        out["total"] = self.total
        return out


def _insert_for(db: Session) -> Any:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"upsert not supported on dialect {dialect!r}")


def _rowcount(result: object) -> int:
    return int(cast(CursorResult[object], result).rowcount)


def upsert_organization(db: Session, *, name: str, plan: str | None) -> tuple[Organization, bool]:
    """Find-or-create an organization by name; returns (row, changed)."""
    now = utcnow()
    insert = _insert_for(db)
    stmt = (
        insert(Organization)
        .values(id=new_id(), name=name, plan=plan, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=["name"])
    )
    changed = _rowcount(db.execute(stmt)) == 1

    if not changed and plan is not None:
        res = db.execute(
            update(Organization)
            .where(Organization.name == name, Organization.plan.is_distinct_from(plan))
            .values(plan=plan, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        changed = _rowcount(res) == 1

    org = db.execute(
        select(Organization).where(Organization.name == name).execution_options(populate_existing=True)
    ).scalar_one()
    return org, changed


def upsert_code(db: Session, *, code: str, organization_id: str) -> RecordOutcome:
    """Insert ``code`` or re-point an unredeemed one at ``organization_id``.

    A redeemed code is never moved: its claimant is already bound to the
    original organization. Returns created / updated / unchanged / conflict.
    """
    insert = _insert_for(db)
    stmt = (
        insert(RedemptionCode)
        .values(
            id=new_id(),
            code=code,
            organization_id=organization_id,
            redeemed=False,
            created_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["code"])
    )
    if _rowcount(db.execute(stmt)) == 1:
        return "created"

    res = db.execute(
        update(RedemptionCode)
        .where(
            RedemptionCode.code == code,
            RedemptionCode.organization_id != organization_id,
            RedemptionCode.redeemed.is_(False),
        )
        .values(organization_id=organization_id)
        .execution_options(synchronize_session=False)
    )
    if _rowcount(res) == 1:
        return "updated"

    current = db.execute(
        select(RedemptionCode.organization_id).where(RedemptionCode.code == code)
    ).scalar_one()
    return "unchanged" if current == organization_id else "conflict"


def _sync_one(db: Session, rec: ProvisioningRecord) -> RecordOutcome:
    org, org_changed = upsert_organization(db, name=rec.granting_entity_name, plan=rec.plan)
    outcome = upsert_code(db, code=rec.code, organization_id=org.id)
    if outcome == "unchanged" and org_changed:
        return "updated"
    return outcome


def sync_codes(db: Session, records: Iterable[object], *, dry_run: bool = False) -> SyncReport:
    """Upsert organizations and codes from an ordered list of records.

    Each record commits on its own, so one bad entry never aborts the batch.
    ``dry_run`` records and conflicting records are rolled back instead.
    Running the same input twice leaves the stored state unchanged and reports only ``unchanged`` on the second run.
    """
    report = SyncReport(dry_run=dry_run)

    for index, raw in enumerate(records):
        try:
            rec = ProvisioningRecord.model_validate(raw)
        except ValidationError as exc:
            report.count("skipped")
            report.errors.append(
                RecordError(index=index, outcome="skipped", detail=_validation_detail(exc))
            )
            continue

        try:
            outcome = _sync_one(db, rec)
            if dry_run or outcome == "conflict":
                db.rollback()
            else:
                db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning(
                "provisioning record failed index=%d code_hint=%s: %s",
                index,
                redact_code(rec.code),
                type(exc).__name__,
            )
            report.count("failed")
            report.errors.append(
                RecordError(index=index, outcome="failed", detail=type(exc).__name__)
            )
            continue

        report.count(outcome)
        if outcome == "conflict":
            report.errors.append(
                RecordError(index=index, outcome="conflict", detail="code_already_redeemed")
            )

    for outcome in ("created", "updated", "unchanged", "skipped", "failed"):
        record_provisioning(outcome=outcome, count=getattr(report, outcome))
    record_provisioning(outcome="conflict", count=report.conflicts)

    logger.info(
        "provisioning done created=%d updated=%d unchanged=%d skipped=%d conflicts=%d failed=%d dry_run=%s",
        report.created,
        report.updated,
        report.unchanged,
        report.skipped,
        report.conflicts,
        report.failed,
        dry_run,
    )
    return report


def _validation_detail(exc: ValidationError) -> str:
    fields: list[str] = []
    for err in exc.errors():
        loc = err.get("loc") or ()
        name = str(loc[0]) if loc else "record"
        if name not in fields:
            fields.append(name)
    return "invalid:" + ",".join(fields) if fields else "invalid"
