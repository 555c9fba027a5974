"""
Domain errors for the file-sharing lifecycle.

Services raise these; the API layer renders them as `{"detail": message}` with the
status code carried by the class (see `register_error_handlers`).
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


logger = logging.getLogger("fs.errors")


class FileShareError(Exception):
    """Base class."""

    status_code = 500
    message = "Internal error"

    def __init__(self, message: str | None = None, *, detail: str | None = None):
        self.message = message or self.message
        # Internal detail is logged, never returned to the caller.
        self.detail = detail
        super().__init__(self.message)


class ValidationError(FileShareError):
    status_code = 400
    message = "Invalid request"


class Unauthorized(FileShareError):
    status_code = 401
    message = "Not authenticated"


class NotFound(FileShareError):
    status_code = 404
    message = "File not found"


class Expired(FileShareError):
    status_code = 410
    message = "File has expired"


class PasswordRequired(FileShareError):
    status_code = 401
    message = "Password required"


class PasswordMismatch(FileShareError):
    status_code = 401
    message = "Incorrect password"


class PayloadTooLarge(FileShareError):
    status_code = 413
    message = "File too large"


class StorageFailure(FileShareError):
    status_code = 500
    message = "Storage unavailable"


async def _handle_file_share_error(request: Request, exc: FileShareError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "storage_failure method=%s path=%s message=%s detail=%s",
            request.method,
            request.url.path,
            exc.message,
            exc.detail,
        )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FileShareError, _handle_file_share_error)
