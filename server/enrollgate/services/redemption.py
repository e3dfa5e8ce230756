"""Redemption engine: exchange a single-use code for organization membership.

A redemption attempt moves through

    STARTED -> CODE_VALIDATED -> CLAIMED -> ENTITY_BOUND -> COMMITTED

and drops to ROLLED_BACK from any state. Everything after STARTED happens in
one database transaction. Mutual exclusion comes from two conditional
UPDATEs (claim the code, bind the user), never from a read-then-write pair,
so concurrent attempts on the same code or the same user need no in-process
locking.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from enrollgate.core.errors import (
    AlreadyRedeemed,
    CodeNotFound,
    EnrollgateError,
    ErrorKind,
    IdentityAlreadyBound,
    IdentityNotFound,
    InternalError,
    MissingCode,
    MissingIdentity,
    RedemptionTimeout,
    TransientStorageError,
)
from enrollgate.core.logging import mask_identity, redact_code
from enrollgate.db.models import Organization, utcnow
from enrollgate.metrics.prometheus import record_redemption
from enrollgate.services import code_store, identity_store


logger = logging.getLogger(__name__)


class RedemptionState(StrEnum):
    STARTED = "started"
    CODE_VALIDATED = "code_validated"
    CLAIMED = "claimed"
    ENTITY_BOUND = "entity_bound"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class OrganizationInfo:
    id: str
    name: str
    plan: str | None


@dataclass(frozen=True)
class RedemptionResult:
    code: str
    user_id: str
    organization: OrganizationInfo
    redeemed_at: datetime


class _Attempt:
    def __init__(
        self, code: str, identity: str, deadline: float | None, clock: Callable[[], float]
    ):
        self.code_hint: str = redact_code(code)
        # user id once resolved; masked contact address until then
        self.subject: str = mask_identity(identity)
        self.state: RedemptionState = RedemptionState.STARTED
        self.history: list[RedemptionState] = [RedemptionState.STARTED]
        self._deadline: float | None = deadline
        self._clock: Callable[[], float] = clock

    def advance(self, state: RedemptionState) -> None:
        logger.debug("redeem code_hint=%s %s -> %s", self.code_hint, self.state, state)
        self.state = state
        self.history.append(state)

    def check_deadline(self) -> None:
        if self._deadline is not None and self._clock() >= self._deadline:
            raise RedemptionTimeout(f"deadline exceeded in state {self.state}")


def _is_transient(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class RedemptionEngine:
    def __init__(
        self,
        *,
        timeout_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._timeout_s: float | None = timeout_s if timeout_s and timeout_s > 0 else None
        self._clock: Callable[[], float] = clock

    def redeem(self, db: Session, code: str | None, identity: str | None) -> RedemptionResult:
        """Claim ``code`` for ``identity`` and bind the identity to the code's organization.

        Raises MissingCode / MissingIdentity before touching storage;
        CodeNotFound, IdentityNotFound, AlreadyRedeemed, IdentityAlreadyBound
        as expected outcomes; TransientStorageError or RedemptionTimeout when a
        retry is safe; InternalError otherwise. On any error the transaction
        is rolled back and the code stays available.
        """
        code_s = (code or "").strip()
        ident_s = (identity or "").strip()
        if code_s == "":
            raise MissingCode()
        if ident_s == "":
            raise MissingIdentity()

        started = self._clock()
        deadline = started + self._timeout_s if self._timeout_s is not None else None
        attempt = _Attempt(code_s, ident_s, deadline, self._clock)
        outcome = "internal_error"
        try:
            result = self._run(db, attempt, code_s, ident_s)
            outcome = "ok"
            return result
        except EnrollgateError as exc:
            outcome = exc.code
            raise
        finally:
            record_redemption(outcome=outcome, latency_s=self._clock() - started)

    def _run(self, db: Session, attempt: _Attempt, code: str, identity: str) -> RedemptionResult:
        try:
            self._apply_statement_timeout(db)

            row = code_store.find_by_code(db, code)
            if row is None:
                raise CodeNotFound()
            user = identity_store.resolve(db, identity)
            if user is None:
                raise IdentityNotFound()
            attempt.subject = user.id
            attempt.advance(RedemptionState.CODE_VALIDATED)
            attempt.check_deadline()

            now = utcnow()
            if code_store.claim(db, code_id=row.id, user_id=user.id, now=now) == 0:
                raise AlreadyRedeemed()
            attempt.advance(RedemptionState.CLAIMED)
            attempt.check_deadline()

            bound = identity_store.bind_entity(
                db, user_id=user.id, organization_id=row.organization_id
            )
            if bound == 0:
                raise IdentityAlreadyBound()
            attempt.advance(RedemptionState.ENTITY_BOUND)

            org = db.get(Organization, row.organization_id)
            if org is None:
                raise InternalError("code references a missing organization")
            info = OrganizationInfo(id=org.id, name=org.name, plan=org.plan)

            attempt.check_deadline()
            db.commit()
            attempt.advance(RedemptionState.COMMITTED)
        except EnrollgateError as exc:
            failed_in = attempt.state
            self._rollback(db, attempt)
            log = logger.error if exc.kind is ErrorKind.INTERNAL else logger.info
            log(
                "redeem rejected code_hint=%s subject=%s error=%s state=%s",
                attempt.code_hint,
                attempt.subject,
                exc.code,
                failed_in,
            )
            raise
        except SQLAlchemyError as exc:
            self._rollback(db, attempt)
            if _is_transient(exc):
                logger.warning(
                    "redeem storage failure code_hint=%s subject=%s: %s",
                    attempt.code_hint,
                    attempt.subject,
                    type(exc).__name__,
                )
                raise TransientStorageError() from exc
            logger.exception(
                "redeem failed code_hint=%s subject=%s", attempt.code_hint, attempt.subject
            )
            raise InternalError() from exc
        except Exception as exc:
            self._rollback(db, attempt)
            logger.exception(
                "redeem failed code_hint=%s subject=%s", attempt.code_hint, attempt.subject
            )
            raise InternalError() from exc

        logger.info(
            "redeem ok code_hint=%s user_id=%s organization_id=%s",
            attempt.code_hint,
            user.id,
            info.id,
        )
        return RedemptionResult(code=code, user_id=user.id, organization=info, redeemed_at=now)

    def _apply_statement_timeout(self, db: Session) -> None:
        if self._timeout_s is None:
            return
        if db.get_bind().dialect.name != "postgresql":
            return
        ms = max(1, int(self._timeout_s * 1000))
        _ = db.execute(text(f"SET LOCAL statement_timeout = {ms}"))

    @staticmethod
    def _rollback(db: Session, attempt: _Attempt) -> None:
        try:
            db.rollback()
        finally:
            attempt.advance(RedemptionState.ROLLED_BACK)
