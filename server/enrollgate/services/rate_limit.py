from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import hashlib
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from enrollgate.db.models import RedemptionRateLimit, utcnow


logger = logging.getLogger(__name__)

SCOPE_IP = "redeem_ip"
SCOPE_IDENTITY = "redeem_identity"


def _safe_key(raw: str) -> str:
    if len(raw) <= 512:
        return raw
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return f"redeem|sha256:{digest}"


def rate_limit_key(*, scope: str, subject: str | None) -> str:
    """``scope|subject`` with the subject trimmed and lowercased; blank subjects share ``unknown``."""
    s = (subject or "").strip().lower()
    return _safe_key(f"{scope}|{s or 'unknown'}")


@dataclass(frozen=True)
class RateLimitCheck:
    blocked: bool
    retry_after_seconds: int


_NOT_BLOCKED = RateLimitCheck(blocked=False, retry_after_seconds=0)


class RedemptionRateLimiter:
    """Counts failed redemptions per key in a fixed window and blocks once the count reaches the limit.

    Only failures count: a client that keeps presenting valid codes is never
    throttled, one that guesses codes is. State lives in the
    ``redemption_rate_limits`` table so every worker process shares it.
    """

    def __init__(self, *, enabled: bool, max_failures: int, window_seconds: int):
        self._enabled: bool = bool(enabled)
        self._max_failures: int = int(max_failures)
        self._window_seconds: int = int(window_seconds)

    @property
    def active(self) -> bool:
        return self._enabled and self._max_failures > 0 and self._window_seconds > 0

    def check(self, db: Session, *, key: str) -> RateLimitCheck:
        if not self.active:
            return _NOT_BLOCKED

        now = utcnow()
        row = db.get(RedemptionRateLimit, key, populate_existing=True)
        if row is None or row.reset_at <= now:
            return _NOT_BLOCKED
        if row.failures < self._max_failures:
            return _NOT_BLOCKED
        retry_after = int((row.reset_at - now).total_seconds())
        return RateLimitCheck(blocked=True, retry_after_seconds=max(1, retry_after))

    def record_failure(self, db: Session, *, key: str) -> None:
        """Add one failure to ``key`` and commit; a lapsed window starts over at 1."""
        if not self.active:
            return

        for attempt in range(2):
            now = utcnow()
            reset_at = now + timedelta(seconds=self._window_seconds)
            row = (
                db.execute(
                    select(RedemptionRateLimit)
                    .where(RedemptionRateLimit.key == key)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                .scalars()
                .one_or_none()
            )
            if row is None:
                db.add(RedemptionRateLimit(key=key, failures=1, reset_at=reset_at))
            elif row.reset_at <= now:
                row.failures = 1
                row.reset_at = reset_at
            else:
                row.failures = int(row.failures) + 1
            try:
                db.commit()
                return
            except IntegrityError:
                # Another worker inserted the same key first; count on top of its row.
                db.rollback()
                if attempt == 1:
                    raise
                logger.debug("rate limit insert race scope=%s, retrying", key.partition("|")[0])
