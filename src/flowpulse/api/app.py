"""
FastAPI application for flowpulse.

Creates the FastAPI app instance and registers routes.
"""

import logging
from enum import Enum

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from flowpulse import __version__
from flowpulse.api.routes import metrics, sync
from flowpulse.core.exceptions import FlowPulseError, SyncInProgressError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes for API responses."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    CONFLICT = "CONFLICT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error_code: ErrorCode
    message: str
    detail: str | None = None


app = FastAPI(
    title="flowpulse API",
    description="Sync control and metrics trends for flowpulse",
    version=__version__,
)

app.include_router(sync.router, prefix="/api", tags=["sync"])
app.include_router(metrics.router, prefix="/api", tags=["metrics"])


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.INVALID_REQUEST,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_409_CONFLICT: ErrorCode.CONFLICT,
    status.HTTP_502_BAD_GATEWAY: ErrorCode.UPSTREAM_ERROR,
}


def _error(status_code: int, code: ErrorCode, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error_code=code, message=message, detail=detail)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Convert HTTPException to the standard error format."""
    code = _STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")

    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error(exc.status_code, code, detail, detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return the first validation problem without internal details."""
    logger.warning(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    first_error = exc.errors()[0] if exc.errors() else {}
    field = " -> ".join(str(loc) for loc in first_error.get("loc", []))
    error_msg = first_error.get("msg", "Invalid input")
    return _error(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        ErrorCode.VALIDATION_ERROR,
        "Request validation failed",
        f"{field}: {error_msg}" if field else error_msg,
    )


@app.exception_handler(FlowPulseError)
async def flowpulse_exception_handler(request: Request, exc: FlowPulseError) -> JSONResponse:
    """Map domain errors that escaped a route."""
    if isinstance(exc, SyncInProgressError):
        return _error(status.HTTP_409_CONFLICT, ErrorCode.CONFLICT, str(exc))
    logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR, str(exc))
