"""
Typed API errors and the handlers that render them as {error, details?}
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(HTTPException):
    """Base class: subclasses only pick the status code"""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(status_code=self.status_code, detail=message)
        self.details = details


class BadRequestError(ApiError):
    status_code = 400


class AuthenticationError(ApiError):
    status_code = 401


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class ServiceUnavailableError(ApiError):
    status_code = 503


class FirebaseConfigError(RuntimeError):
    """Raised when Firebase Admin cannot be initialised"""


def error_body(message: Any, details: Optional[Any] = None) -> dict:
    if isinstance(message, dict):
        body = dict(message)
        body.setdefault("error", body.pop("message", "Request failed"))
    else:
        body = {"error": str(message)}
    if details is not None:
        body["details"] = details
    return body


# ==================== HANDLERS ====================

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    details = getattr(exc, "details", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, details),
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=error_body("Validation failed", details))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
