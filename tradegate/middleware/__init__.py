"""Middleware package: error hierarchy and exception handlers."""

from tradegate.middleware.error_handler import (
    DataNotAvailableError,
    GatewayError,
    NoProxyAvailableError,
    UnknownExchangeError,
    register_error_handlers,
)

__all__ = [
    "DataNotAvailableError",
    "GatewayError",
    "NoProxyAvailableError",
    "UnknownExchangeError",
    "register_error_handlers",
]
