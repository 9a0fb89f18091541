"""
Error taxonomy for the auth core plus the global exception handlers
that render it (and prevent stack-trace leakage to clients).

Every business-rule failure is an ``AppError`` with a stable ``kind``
that clients can switch on and a human-readable message.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class AppError(Exception):
    kind: str = "app_error"
    status_code: int = 400
    message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message

    def extra(self) -> dict[str, Any]:
        return {}

    def headers(self) -> dict[str, str] | None:
        return None


# ── OTP ─────────────────────────────────────────────────────────────
class Throttled(AppError):
    kind = "throttled"
    message = "A code was sent recently"

    def __init__(self, seconds_remaining: int) -> None:
        super().__init__(f"A new code can be requested in {seconds_remaining} seconds")
        self.seconds_remaining = seconds_remaining

    def extra(self) -> dict[str, Any]:
        return {"resend_after": self.seconds_remaining}

    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.seconds_remaining)}


class InvalidOrExpiredCode(AppError):
    kind = "invalid_or_expired_code"
    status_code = 401
    message = "Invalid or expired code"


class AttemptsExceeded(AppError):
    kind = "attempts_exceeded"
    status_code = 401
    message = "Too many attempts, request a new code"


# ── Tokens ──────────────────────────────────────────────────────────
class InvalidToken(AppError):
    kind = "invalid_token"
    status_code = 401
    message = "Invalid token"

    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class MalformedToken(InvalidToken):
    kind = "malformed_token"
    message = "Malformed token"


class InvalidSignature(InvalidToken):
    kind = "invalid_signature"
    message = "Token signature verification failed"


class TokenExpired(InvalidToken):
    kind = "token_expired"
    message = "Token has expired"


class TokenTypeMismatch(AppError):
    kind = "token_type_mismatch"
    status_code = 401
    message = "Wrong token type"


class RevokedOrExpired(AppError):
    kind = "revoked_or_expired"
    status_code = 401
    message = "Refresh token is revoked or expired"


# ── Identity ────────────────────────────────────────────────────────
class NotAuthenticated(AppError):
    kind = "not_authenticated"
    status_code = 401
    message = "Could not validate credentials"

    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class SessionNotFound(AppError):
    kind = "session_not_found"
    status_code = 401
    message = "Anonymous session not found"


class SessionExpired(AppError):
    kind = "session_expired"
    status_code = 401
    message = "Anonymous session has expired"


class UserNotFound(AppError):
    kind = "user_not_found"
    status_code = 401
    message = "User not found"


class UserDeactivated(AppError):
    kind = "user_deactivated"
    status_code = 401
    message = "User account is deactivated"


class PermissionDenied(AppError):
    kind = "permission_denied"
    status_code = 403
    message = "Insufficient privileges"


class InvalidOperation(AppError):
    kind = "invalid_operation"
    message = "Operation not allowed"


# ── Accounts ────────────────────────────────────────────────────────
class ResourceNotFound(AppError):
    kind = "not_found"
    status_code = 404
    message = "User not found"


class EmailTaken(AppError):
    kind = "email_taken"
    status_code = 409
    message = "Email is already in use"


# ── Infrastructure ──────────────────────────────────────────────────
class DeliveryFailed(AppError):
    kind = "delivery_failed"
    status_code = 503
    message = "Could not deliver the code"


class ServiceUnavailable(AppError):
    kind = "service_unavailable"
    status_code = 503
    message = "Service temporarily unavailable"


class RequestTimeout(AppError):
    kind = "request_timeout"
    status_code = 408
    message = "Request timed out"


# ── Handlers ────────────────────────────────────────────────────────
def app_error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind, "success": False, **exc.extra()},
        headers=exc.headers(),
    )


async def _app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.kind, exc.message, exc_info=exc.__cause__ is not None)
    return app_error_response(exc)


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "success": False},
        headers=getattr(exc, "headers", None),
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"detail": "Database constraint violation", "success": False},
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal database error", "success": False},
    )


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "success": False},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
