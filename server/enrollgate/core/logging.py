from __future__ import annotations

import contextvars
import logging
import re
import sys
from typing import override


request_id_ctx_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    @override
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.request_id = request_id_ctx_var.get()
        return True


# Redemption codes are bearer secrets until claimed: keep them out of log lines.
_RE_CODE_JSON = re.compile(r'("code"\s*:\s*")([^"]+)(")', re.IGNORECASE)
_RE_CODE_PY = re.compile(r"('code'\s*:\s*')([^']+)(')", re.IGNORECASE)
_RE_CODE_KV = re.compile(r"(?i)\b(code)=([^\s,;]+)")

_RE_ADMIN_SECRET = re.compile(r"(?i)(x-admin-secret\s*[:=]\s*)(\S+)")


def redact_code(raw: str) -> str:
    """Short, log-safe form of a code: first two chars plus its length."""
    if len(raw) <= 2:
        return f"[REDACTED len={len(raw)}]"
    return f"{raw[:2]}…[len={len(raw)}]"


def mask_identity(raw: str) -> str:
    """Log-safe form of an identity: contact addresses keep one char and the domain."""
    local, sep, domain = raw.strip().partition("@")
    if sep == "":
        return raw.strip()
    head = local[:1] if local else ""
    return f"{head}***@{domain}"


def _redact_value(raw: str) -> str:
    return f"[REDACTED len={len(raw)}]"


class RedactingFormatter(logging.Formatter):
    @override
    def format(self, record: logging.LogRecord) -> str:
        out = super().format(record)

        out = _RE_CODE_JSON.sub(
            lambda m: f"{m.group(1)}{_redact_value(m.group(2))}{m.group(3)}", out
        )
        out = _RE_CODE_PY.sub(lambda m: f"{m.group(1)}{_redact_value(m.group(2))}{m.group(3)}", out)
        out = _RE_CODE_KV.sub(lambda m: f"{m.group(1)}={_redact_value(m.group(2))}", out)
        out = _RE_ADMIN_SECRET.sub(r"\1[REDACTED]", out)

        return out


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(
        RedactingFormatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] [rid=%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    # Avoid duplicate handlers when app reloads in dev.
    root.handlers = [handler]
