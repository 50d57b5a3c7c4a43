"""
Domain error taxonomy and global exception handlers.

The same exception classes are raised by the HTTP layer, the pure
lifecycle / permission modules, and the client core, so a failure keeps
its meaning on both sides of the wire.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class LoadflowError(Exception):
    """Base class for every expected, non-fatal failure."""

    status_code: int = 400
    default_detail: str = "Request failed"

    def __init__(self, detail: str | None = None, *, field: str | None = None) -> None:
        self.detail = detail or self.default_detail
        self.field = field
        super().__init__(self.detail)


class ValidationError(LoadflowError):
    """Missing or invalid input (empty client name, unknown status token...)."""

    status_code = 422
    default_detail = "Invalid request"


class AuthenticationError(LoadflowError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    default_detail = "Could not validate credentials"


class AuthorizationError(LoadflowError):
    """Role or ownership check failed."""

    status_code = 403
    default_detail = "Access denied"


class NotFoundError(LoadflowError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(LoadflowError):
    """Uniqueness or referential conflict (duplicate email, owned loads)."""

    status_code = 409
    default_detail = "Conflict"


# ── Handlers ────────────────────────────────────────────────────────
async def _loadflow_error_handler(_request: Request, exc: LoadflowError) -> JSONResponse:
    content: dict = {"detail": exc.detail, "success": False}
    if exc.field:
        content["field"] = exc.field
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


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
    app.add_exception_handler(LoadflowError, _loadflow_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
