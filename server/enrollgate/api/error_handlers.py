"""Turn domain errors into ``{"ok": false, "error": <code>}`` responses.

Expected outcomes (not found / conflict / validation) are returned verbatim.
Transient and rate-limited errors carry ``Retry-After``. Anything else is
logged with the request id and answered as ``internal_error`` without
storage details.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from enrollgate.core.errors import EnrollgateError, ErrorKind, InternalError, InvalidRequest


logger = logging.getLogger(__name__)


def error_response(exc: EnrollgateError) -> JSONResponse:
    headers: dict[str, str] | None = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.http_status, content=exc.to_response(), headers=headers)


def unhandled_error_response(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled error path=%s", request.url.path, exc_info=exc)
    return error_response(InternalError())


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(EnrollgateError)
    async def enrollgate_error_handler(request: Request, exc: EnrollgateError) -> JSONResponse:
        if exc.kind is ErrorKind.INTERNAL:
            logger.error("internal error path=%s: %s", request.url.path, exc.message)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = sorted({str(e.get("loc", ("",))[-1]) for e in exc.errors()})
        logger.info("invalid request path=%s fields=%s", request.url.path, ",".join(fields))
        return error_response(InvalidRequest())

    # Starlette answers this one from ServerErrorMiddleware, outside the
    # request-context middleware; that middleware catches first so the
    # response still gets X-Request-Id. This covers anything raised above it.
    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        return unhandled_error_response(request, exc)
