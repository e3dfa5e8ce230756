"""Error taxonomy for redemption and provisioning.

Every error carries a stable ``code`` string that is returned verbatim to
callers as ``{"ok": false, "error": code}``. ``kind`` groups codes for
handling: not_found / conflict / validation are expected outcomes,
transient is safe to retry, rate_limited asks the caller to back off, internal
is never shown in detail.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"


class EnrollgateError(Exception):
    code: str = "internal_error"
    kind: ErrorKind = ErrorKind.INTERNAL
    http_status: int = 500

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message: str = message or self.code

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    @property
    def retry_after(self) -> int | None:
        """Seconds for the ``Retry-After`` header, or None when retrying will not help."""
        return 1 if self.retryable else None

    def to_response(self) -> dict[str, object]:
        return {"ok": False, "error": self.code}


class CodeNotFound(EnrollgateError):
    code = "code_not_found"
    kind = ErrorKind.NOT_FOUND
    http_status = 404


class IdentityNotFound(EnrollgateError):
    code = "identity_not_found"
    kind = ErrorKind.NOT_FOUND
    http_status = 404


class AlreadyRedeemed(EnrollgateError):
    code = "already_redeemed"
    kind = ErrorKind.CONFLICT
    http_status = 409


class IdentityAlreadyBound(EnrollgateError):
    code = "identity_already_bound"
    kind = ErrorKind.CONFLICT
    http_status = 409


class MissingCode(EnrollgateError):
    code = "missing_code"
    kind = ErrorKind.VALIDATION
    http_status = 400


class MissingIdentity(EnrollgateError):
    code = "missing_identity"
    kind = ErrorKind.VALIDATION
    http_status = 400


class InvalidRequest(EnrollgateError):
    code = "invalid_request"
    kind = ErrorKind.VALIDATION
    http_status = 400


class Forbidden(EnrollgateError):
    code = "forbidden"
    kind = ErrorKind.VALIDATION
    http_status = 403


class TransientStorageError(EnrollgateError):
    code = "storage_unavailable"
    kind = ErrorKind.TRANSIENT
    http_status = 503


class RedemptionTimeout(EnrollgateError):
    code = "redemption_timeout"
    kind = ErrorKind.TRANSIENT
    http_status = 503


class RateLimited(EnrollgateError):
    code = "rate_limited"
    kind = ErrorKind.RATE_LIMITED
    http_status = 429

    def __init__(self, retry_after_seconds: int, message: str | None = None):
        super().__init__(message)
        self.retry_after_seconds: int = max(1, int(retry_after_seconds))

    @property
    def retry_after(self) -> int | None:
        return self.retry_after_seconds


class InternalError(EnrollgateError):
    code = "internal_error"
    kind = ErrorKind.INTERNAL
    http_status = 500
