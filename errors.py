"""
Error kinds and the JSON envelope used for failed requests.

Handlers raise one of the ApiError subclasses below; the exception handlers
registered by ``install_error_handlers`` turn them into

    {"success": false, "error": "...", "code": "<kind>", "errors": [...]}

so callers (and tests) can branch on ``code`` instead of the message text.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INFRASTRUCTURE = "infrastructure"


class ApiError(Exception):
    status_code = 500
    kind = ErrorKind.INFRASTRUCTURE

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class Unauthenticated(ApiError):
    status_code = 401
    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class ValidationFailed(ApiError):
    status_code = 400
    kind = ErrorKind.VALIDATION


class NotFound(ApiError):
    status_code = 404
    kind = ErrorKind.NOT_FOUND


class Forbidden(ApiError):
    status_code = 403
    kind = ErrorKind.FORBIDDEN


class DatabaseUnavailable(ApiError):
    status_code = 500
    kind = ErrorKind.INFRASTRUCTURE


def format_validation_errors(errors: List[Dict[str, Any]]) -> List[str]:
    """Flatten pydantic error dicts into ``"field.path: message"`` strings."""
    out = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc)
        msg = err.get("msg", "Invalid value")
        out.append(f"{field}: {msg}" if field else msg)
    return out


def validation_failed_from(exc: ValidationError, message: str = "Validation failed") -> ValidationFailed:
    return ValidationFailed(message, errors=format_validation_errors(exc.errors()))


def error_body(message: str, kind: ErrorKind, errors: Optional[List[str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": message, "code": kind.value}
    if errors:
        body["errors"] = errors
    return body


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.kind, exc.errors))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = format_validation_errors(exc.errors())
    logger.info("%s %s -> 400 %s", request.method, request.url.path, errors)
    return JSONResponse(status_code=400, content=error_body("Validation failed", ErrorKind.VALIDATION, errors))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error", ErrorKind.INFRASTRUCTURE))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
