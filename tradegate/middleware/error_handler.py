"""Gateway error hierarchy and its mapping onto HTTP responses.

The core raises these errors directly: the scheduler raises
``NoProxyAvailableError`` and the market data facade raises
``DataNotAvailableError``. The handlers registered by
``register_error_handlers`` turn them into the query service envelope
``{success: false, data: null, error, meta}``. ``meta`` carries the error
details (destination, pair) as strings.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base error for all gateway-specific errors.

    Keyword arguments become ``details`` and end up in the response ``meta``.
    """

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **details: object) -> None:
        self.message = message or type(self).message
        self.details = details
        super().__init__(self.message)


class NoProxyAvailableError(GatewayError):
    """The scheduler has no active proxy left for a destination."""

    status_code = 503
    message = "No proxy available for destination"


class DataNotAvailableError(GatewayError):
    """An exchange could not deliver the requested market data."""

    status_code = 502
    message = "Market data not available"


class UnknownExchangeError(DataNotAvailableError):
    """No exchange (or pair) is registered under the requested name."""

    status_code = 404
    message = "Unknown exchange"


def error_response(status_code: int, error: str, meta: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "data": None, "error": error, "meta": meta},
    )


async def _on_gateway_error(_request: Request, exc: GatewayError) -> JSONResponse:
    meta = {key: str(value) for key, value in exc.details.items()} or None
    if exc.status_code >= 500:
        logger.warning(
            "%s: %s",
            type(exc).__name__,
            exc.message,
            extra={"destination": exc.details.get("destination"), "error_reason": type(exc).__name__},
        )
    return error_response(exc.status_code, exc.message, meta)


async def _on_http_exception(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail))


async def _on_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [
        {
            "field": " -> ".join(str(part) for part in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return error_response(422, "Validation error", {"fields": fields})


async def _on_unhandled_error(_request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception: %s", exc, exc_info=exc)
    return error_response(500, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Install the envelope handlers on *app*."""
    app.add_exception_handler(GatewayError, _on_gateway_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _on_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _on_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _on_unhandled_error)
