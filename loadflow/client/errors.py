"""
Map HTTP failures back onto the domain error taxonomy.
"""

from __future__ import annotations

import httpx

from loadflow.core.exceptions import (AuthenticationError, AuthorizationError,
                                      ConflictError, LoadflowError,
                                      NotFoundError, ValidationError)

_BY_STATUS: dict[int, type[LoadflowError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


class ServerError(LoadflowError):
    """5xx or any status the taxonomy has no name for."""

    status_code = 500
    default_detail = "Server error"


class StreamDisconnected(Exception):
    """The event stream ended; events may have been missed."""


# Failures worth reconnecting after; 5xx covers a restarting server or proxy.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    StreamDisconnected,
    ServerError,
)


def _detail(response: httpx.Response) -> tuple[str | None, str | None]:
    try:
        body = response.json()
    except ValueError:
        return (response.text or None), None
    if not isinstance(body, dict):
        return None, None
    detail = body.get("detail") or body.get("error")
    field = body.get("field")
    if isinstance(detail, list):
        # FastAPI request-validation errors
        first = detail[0] if detail else {}
        loc = first.get("loc") or []
        field = field or (str(loc[-1]) if loc else None)
        detail = first.get("msg")
    return (str(detail) if detail is not None else None), field


def error_from_response(response: httpx.Response) -> LoadflowError:
    detail, field = _detail(response)
    cls = _BY_STATUS.get(response.status_code, ServerError)
    exc = cls(detail, field=field)
    exc.status_code = response.status_code
    return exc


def raise_for_status(response: httpx.Response) -> httpx.Response:
    if response.is_error:
        raise error_from_response(response)
    return response
