"""Logging and health plumbing shared by the storefront services."""

from .health import ServiceHealth
from .logging_config import (
    RequestLoggingMiddleware,
    get_logger,
    set_request_context,
    setup_logging,
)

__all__ = [
    "ServiceHealth",
    "RequestLoggingMiddleware",
    "get_logger",
    "set_request_context",
    "setup_logging",
]
