# pyright: reportMissingImports=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from enrollgate.api.v1.deps import get_organization_cache, require_admin_secret
from enrollgate.db.session import get_db
from enrollgate.services.access import OrganizationCache
from enrollgate.services.provisioning import sync_codes


router = APIRouter(
    prefix="/admin/codes",
    tags=["admin"],
    dependencies=[Depends(require_admin_secret)],
)


class CodeSyncRequest(BaseModel):
    # Kept loose so one malformed record is reported instead of rejecting the batch.
    records: list[Any] = Field(default_factory=list, max_length=10_000)
    dry_run: bool = False


class RecordErrorOut(BaseModel):
    index: int
    outcome: str
    detail: str


class CodeSyncResponse(BaseModel):
    ok: bool
    created: int
    updated: int
    unchanged: int
    skipped: int
    conflicts: int
    failed: int
    total: int
    dry_run: bool
    errors: list[RecordErrorOut] = Field(default_factory=list)


@router.post(
    ":sync",
    response_model=CodeSyncResponse,
    operation_id="admin_codes_sync",
)
def admin_codes_sync(
    payload: CodeSyncRequest,
    db: Session = Depends(get_db),
    cache: OrganizationCache = Depends(get_organization_cache),
) -> CodeSyncResponse:
    report = sync_codes(db, payload.records, dry_run=payload.dry_run)
    if not payload.dry_run and (report.created or report.updated):
        # Entries keyed on superseded stamps can no longer be hit; free them.
        cache.clear()
    return CodeSyncResponse(
        ok=report.ok,
        created=report.created,
        updated=report.updated,
        unchanged=report.unchanged,
        skipped=report.skipped,
        conflicts=report.conflicts,
        failed=report.failed,
        total=report.total,
        dry_run=report.dry_run,
        errors=[
            RecordErrorOut(index=e.index, outcome=e.outcome, detail=e.detail)
            for e in report.errors
        ],
    )
