"""Custom exceptions and FastAPI error handler registration."""
from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .schemas.envelope import ApiResponse

logger = logging.getLogger(__name__)


# ── Custom Exceptions ────────────────────────────────────────────────


class JobNotFoundError(Exception):
    """Requested job ID does not exist."""


class SubjectNotFoundError(Exception):
    """Requested subject (book) does not exist."""


class SubjectExistsError(Exception):
    """A subject with the same title already exists."""


class InvalidTransitionError(Exception):
    """A status change is not an edge of the job status graph."""


class DuplicateJobError(Exception):
    """A job of the same kind is already queued or processing for the subject."""


class RetryNotNeededError(Exception):
    """The job has nothing left to retry."""


class MissingInputError(Exception):
    """A job's input file is no longer present on disk."""


class InvalidPayloadError(Exception):
    """A job payload does not match its kind."""


class ConfigValidationError(Exception):
    """Runtime config patch contains invalid keys or values."""


class CollaboratorUnavailableError(Exception):
    """No implementation is configured for a required collaborator."""


class NetworkError(Exception):
    """A collaborator could not reach its remote source."""


class ParseError(Exception):
    """A collaborator could not interpret what its remote source returned."""


# ── Error → HTTP mapping ────────────────────────────────────────────

_EXCEPTION_STATUS = {
    JobNotFoundError: 404,
    SubjectNotFoundError: 404,
    InvalidTransitionError: 409,
    SubjectExistsError: 409,
    DuplicateJobError: 409,
    RetryNotNeededError: 409,
    MissingInputError: 422,
    InvalidPayloadError: 422,
    ConfigValidationError: 422,
    NetworkError: 502,
    ParseError: 502,
    CollaboratorUnavailableError: 503,
}


def _make_handler(status_code: int):
    """Create a handler that wraps an exception in ApiResponse."""

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        resp = ApiResponse.fail(str(exc))
        return JSONResponse(status_code=status_code, content=resp.model_dump())

    return _handler


def register_error_handlers(app: FastAPI) -> None:
    """Register custom exception handlers on the FastAPI app."""
    for exc_cls, status in _EXCEPTION_STATUS.items():
        app.add_exception_handler(exc_cls, _make_handler(status))

    # Catch-all for unexpected errors (also handles module-aliased exceptions)
    _NAME_STATUS = {cls.__name__: code for cls, code in _EXCEPTION_STATUS.items()}

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        status = _NAME_STATUS.get(type(exc).__name__)
        if status is not None:
            resp = ApiResponse.fail(str(exc))
            return JSONResponse(status_code=status, content=resp.model_dump())
        logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
        resp = ApiResponse.fail("Internal server error")
        return JSONResponse(status_code=500, content=resp.model_dump())
