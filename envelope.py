"""JSON envelope helpers and exception handlers.

Every response body has the shape ``{"success": bool, "message": str?,
"data": ...?, "errors": [...]?}``.
"""

import logging
import os
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def success_response(
    data: Any = None,
    message: Optional[str] = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def error_response(
    status_code: int,
    message: str,
    errors: Optional[list] = None,
    headers: Optional[dict] = None,
    **extra: Any,
) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = errors
    body.update(extra)
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder(body), headers=headers
    )


def _field_name(loc) -> str:
    # ("body", "originalUrl") -> "originalUrl"; ("query", "page") -> "page"
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


def _clean_message(msg: str) -> str:
    prefix = "Value error, "
    return msg[len(prefix):] if msg.startswith(prefix) else msg


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _field_name(err["loc"]), "message": _clean_message(err["msg"])}
        for err in exc.errors()
    ]
    logger.info(
        "Request validation failed",
        extra={"path": request.url.path, "errors": errors},
    )
    return error_response(
        status.HTTP_400_BAD_REQUEST, "Validation failed", errors=errors
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(
        exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None)
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={"path": request.url.path, "method": request.method},
    )
    if os.environ.get("ENVIRONMENT", "development") == "production":
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
        )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        str(exc) or exc.__class__.__name__,
        stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
