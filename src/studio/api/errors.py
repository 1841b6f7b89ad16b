"""Translate domain errors into the structured error body.

Every failure leaves the API as ``{"error": {"kind": ..., "message": ...}}``.
Unexpected exceptions are logged and reported as ``ServerError`` without
internal detail.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from ..domain.errors import ServerError, StudioError, ValidationError


logger = logging.getLogger("studio.api")

_HTTP_KINDS = {
    400: "ValidationError",
    401: "Unauthorized",
    404: "NotFound",
    409: "Conflict",
    422: "ValidationError",
}


def _body(kind: str, message: str) -> dict:
    return {"error": {"kind": kind, "message": message}}


async def _studio_error_handler(request: Request, exc: StudioError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_body(exc.kind, exc.message))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg") or ValidationError.default_message)
    return JSONResponse(status_code=ValidationError.status_code, content=_body(ValidationError.kind, message))


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    kind = _HTTP_KINDS.get(exc.status_code, "ServerError" if exc.status_code >= 500 else "ValidationError")
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(kind, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = ServerError()
    return JSONResponse(status_code=err.status_code, content=_body(err.kind, err.message))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StudioError, _studio_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_handler)
