"""Map engine errors onto HTTP responses."""

from typing import Dict, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from repo_backup.exceptions import (
    AuthError,
    BackupError,
    BusyError,
    CloneError,
    FatalIOError,
    PayloadTooLargeError,
    ValidationError,
)

from .models import ErrorResponse

# Most specific first
STATUS_CODES: Dict[Type[BackupError], int] = {
    AuthError: HTTP_401_UNAUTHORIZED,
    PayloadTooLargeError: HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    ValidationError: HTTP_400_BAD_REQUEST,
    BusyError: HTTP_503_SERVICE_UNAVAILABLE,
    FatalIOError: HTTP_500_INTERNAL_SERVER_ERROR,
    CloneError: HTTP_502_BAD_GATEWAY,
}


def status_for(error: BackupError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return HTTP_500_INTERNAL_SERVER_ERROR


def error_response(error: BackupError) -> JSONResponse:
    body = ErrorResponse(detail=error.reason, error=error.kind, stage=error.stage)
    if isinstance(error, FatalIOError) and error.report is not None:
        body.report = error.report.model_dump(mode="json")

    headers = {}
    if isinstance(error, AuthError):
        headers["WWW-Authenticate"] = "Bearer"
    elif isinstance(error, BusyError):
        headers["Retry-After"] = "1"
    return JSONResponse(
        status_code=status_for(error),
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


async def backup_error_handler(request: Request, exc: BackupError) -> JSONResponse:
    return error_response(exc)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BackupError, backup_error_handler)
