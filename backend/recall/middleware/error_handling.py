"""
Error Handling Middleware

Renders every failure below the routers as one JSON error body with a short
correlation id, so callers of the scheduling API can branch on `error` and
`retryable` instead of parsing messages.

Usage:
    from recall.middleware.error_handling import setup_error_handling, ServiceError

    setup_error_handling(app, debug=settings.DEBUG)

    # anywhere below the router
    raise NotFoundError(f"Learner {learner_id} not found")

Resolution order inside dispatch():
    - HTTPException: re-raised, FastAPI renders it
    - ServiceError: status/code/retryable taken from the error class
    - anything else: 500 internal_server_error, traceback only in debug mode

Retryable errors (lock contention, rebuild in progress) carry a Retry-After
header.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 1


class ErrorResponse(BaseModel):
    """JSON body of every error response."""

    error: str  # e.g. "no_prior_state"
    message: str
    error_id: str  # matches the log line
    retryable: bool = False
    details: Optional[dict] = None
    timestamp: datetime


class ServiceError(Exception):
    """
    Base class of errors the API renders itself.

    Subclasses set status_code, error_code and retryable as class
    attributes; status_code and error_code may also be overridden per
    instance.

    Example:
        raise ServiceError("Store unavailable", status_code=503, error_code="store_unavailable")
    """

    status_code: int = 500
    error_code: str = "service_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code or self.status_code
        self.error_code = error_code or self.error_code
        self.details = details


def _render(
    status_code: int,
    body: ErrorResponse,
) -> JSONResponse:
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if body.retryable else None
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers=headers,
    )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns exceptions escaping the app into ErrorResponse bodies."""

    def __init__(self, app, debug: bool = False):
        """
        Args:
            app: FastAPI/Starlette application
            debug: Include error details and tracebacks in responses
        """
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        error_id = uuid4().hex[:8]
        context = {
            "error_id": error_id,
            "path": request.url.path,
            "method": request.method,
        }

        try:
            return await call_next(request)
        except HTTPException:
            raise
        except ServiceError as e:
            # Client-side and retryable failures are expected traffic
            expected = e.retryable or e.status_code < 500
            (logger.warning if expected else logger.error)(
                f"[{error_id}] {e.error_code}: {e.message}",
                extra={**context, "error_code": e.error_code, "details": e.details},
            )
            return _render(
                e.status_code,
                ErrorResponse(
                    error=e.error_code,
                    message=e.message,
                    error_id=error_id,
                    retryable=e.retryable,
                    details=e.details if self.debug else None,
                    timestamp=datetime.now(timezone.utc),
                ),
            )
        except Exception as e:
            trace = traceback.format_exc()
            logger.error(
                f"[{error_id}] Unhandled {type(e).__name__} on "
                f"{request.method} {request.url.path}: {e}",
                extra={**context, "traceback": trace},
            )
            details = None
            if self.debug:
                details = {"exception": type(e).__name__, "message": str(e), "traceback": trace}
            return _render(
                500,
                ErrorResponse(
                    error="internal_server_error",
                    message="An unexpected error occurred",
                    error_id=error_id,
                    details=details,
                    timestamp=datetime.now(timezone.utc),
                ),
            )


def setup_error_handling(app: FastAPI, debug: bool = False) -> None:
    """Install ErrorHandlingMiddleware on the app."""
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)
    logger.info(f"Error handling middleware enabled (debug={debug})")
