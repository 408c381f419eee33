"""Uniform ``{success: false, message}`` error bodies."""

import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sftpdrop.core.exceptions import UploadError
from sftpdrop.models.upload import ErrorResponse

logger = logging.getLogger(__name__)


def error_response(message: str, status_code: int, errors: Optional[List[str]] = None) -> JSONResponse:
    body = ErrorResponse(message=message, errors=errors)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def upload_error_response(e: UploadError) -> JSONResponse:
    return error_response(e.message, e.status_code)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        details.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return error_response("Invalid request", 400, errors=details or None)


async def _handle_upload_error(request: Request, exc: UploadError) -> JSONResponse:
    return upload_error_response(exc)


def register_exception_handlers(app: FastAPI) -> None:
    """Map request validation failures to 400 and pipeline errors to their status."""
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(UploadError, _handle_upload_error)
