"""
Domain error kinds and global exception handlers.

Services raise ``AuthError`` tagged with an ``ErrorKind``; the HTTP layer
switches on the kind, never on the message text.
"""

from __future__ import annotations

import logging
from enum import Enum

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    ALREADY_EXISTS = "already_exists"
    # Unknown email, wrong password and missing hash all collapse into this one.
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_DISABLED = "account_disabled"
    CAPTCHA_FAILED = "captcha_failed"
    TOKEN_INVALID_OR_EXPIRED = "token_invalid_or_expired"
    USER_NOT_FOUND = "user_not_found"
    ACCESS_TOKEN_EXPIRED = "access_token_expired"
    ACCESS_TOKEN_INVALID = "access_token_invalid"
    FORBIDDEN = "forbidden"


DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCOUNT_DISABLED: 401,
    ErrorKind.CAPTCHA_FAILED: 400,
    ErrorKind.TOKEN_INVALID_OR_EXPIRED: 401,
    ErrorKind.USER_NOT_FOUND: 404,
    ErrorKind.ACCESS_TOKEN_EXPIRED: 401,
    ErrorKind.ACCESS_TOKEN_INVALID: 401,
    ErrorKind.FORBIDDEN: 403,
}


class AuthError(Exception):
    """A recoverable authentication / account failure."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def to_http(self, status_code: int | None = None) -> HTTPException:
        return HTTPException(
            status_code=status_code or DEFAULT_STATUS[self.kind],
            detail=self.message,
        )


async def _auth_error_handler(_request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=DEFAULT_STATUS[exc.kind],
        content={"detail": exc.message, "error": exc.kind.value, "success": False},
    )


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "success": False},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation failed", "errors": errors, "success": False},
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"detail": "Database constraint violation", "success": False},
    )


def _internal_error(request: Request, exc: Exception, detail: str) -> JSONResponse:
    content: dict[str, object] = {"detail": detail, "success": False}
    settings = getattr(request.app.state, "settings", None)
    if settings is not None and not settings.is_production:
        content["message"] = str(exc)
    return JSONResponse(status_code=500, content=content)


async def _sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return _internal_error(request, exc, "Internal database error")


async def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return _internal_error(request, exc, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AuthError, _auth_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
