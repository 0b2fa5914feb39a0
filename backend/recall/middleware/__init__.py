"""
Middleware Package

Provides FastAPI middleware for error handling.

Usage:
    from recall.middleware import setup_error_handling

    setup_error_handling(app, debug=settings.DEBUG)
"""

from recall.middleware.error_handling import (
    ErrorHandlingMiddleware,
    ServiceError,
    setup_error_handling,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "ServiceError",
    "setup_error_handling",
]
