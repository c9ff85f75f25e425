"""Domain exceptions and their HTTP translation.

Services raise these; the handlers registered in ``register_exception_handlers``
turn them into ``{"detail": ...}`` responses. Anything that is not a
``HedgingError`` is logged server-side and reported as a bare 500.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class HedgingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HedgingError):
    status_code = status.HTTP_400_BAD_REQUEST


class PositionLimitError(ValidationError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(HedgingError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(HedgingError):
    status_code = status.HTTP_409_CONFLICT


class AuthError(HedgingError):
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(HedgingError):
    status_code = status.HTTP_403_FORBIDDEN


class FeedUnavailableError(HedgingError):
    status_code = status.HTTP_502_BAD_GATEWAY


async def hedging_error_handler(request: Request, exc: HedgingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HedgingError, hedging_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
