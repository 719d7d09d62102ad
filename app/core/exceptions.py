"""Business errors raised by the task services.

Routers never translate these by hand: ``register_exception_handlers`` maps
every ``LoomioError`` to a JSON body ``{"error": ..., "message": ...}`` with
the status code carried by the exception class.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LoomioError(Exception):
    """Base class for errors reported synchronously to the caller."""

    status_code = 400
    error_code = "BAD_REQUEST"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class NotFound(LoomioError):
    status_code = 404
    error_code = "NOT_FOUND"


class Forbidden(LoomioError):
    status_code = 403
    error_code = "FORBIDDEN"


class Conflict(LoomioError):
    status_code = 409
    error_code = "CONFLICT"


class CapacityExceeded(LoomioError):
    error_code = "CAPACITY_EXCEEDED"


class DeadlinePassed(LoomioError):
    error_code = "DEADLINE_PASSED"


class DuplicateAssignment(LoomioError):
    error_code = "DUPLICATE_ASSIGNMENT"


class ValidationFailed(LoomioError):
    error_code = "VALIDATION_ERROR"


async def _loomio_error_handler(request: Request, exc: LoomioError) -> JSONResponse:
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LoomioError, _loomio_error_handler)
