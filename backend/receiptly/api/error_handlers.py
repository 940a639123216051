"""
Custom exception handlers for FastAPI.

Every error leaves the API as the result envelope
``{"isSuccess": false, "message": ..., "errors"?: [...]}`` with the HTTP
status of the failure.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_500_INTERNAL_SERVER_ERROR

from receiptly.core.errors import FieldError, ReceiptError, ReceiptValidationError
from receiptly.core.observability import capture_exception
from receiptly.models.schemas import ActionResult

logger = logging.getLogger(__name__)


def _request_field(loc) -> str:
    parts = [str(p) for p in loc]
    if parts and parts[0] in ("body", "query", "path", "header"):
        parts = parts[1:]
    return ".".join(parts) or "__root__"


def receipt_error_handler(request: Request, exc: ReceiptError):
    return JSONResponse(
        status_code=exc.status_code,
        content=ActionResult.failure(exc).to_response_content(),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [FieldError(_request_field(e.get("loc", ())), str(e.get("msg", "Invalid value"))) for e in exc.errors()]
    failure = ReceiptValidationError(errors, message="Invalid request")
    return JSONResponse(
        status_code=HTTP_400_BAD_REQUEST,
        content=ActionResult.failure(failure).to_response_content(),
    )


def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"isSuccess": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


def generic_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error path=%s", request.url.path, exc_info=exc)
    capture_exception(exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={"isSuccess": False, "message": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReceiptError, receipt_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
