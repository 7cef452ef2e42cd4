"""Observability module for forkchat."""

from .logging import (
    RequestContext,
    RequestLogEntry,
    ResponseLogEntry,
    StructuredLogger,
    configure_logging,
)

__all__ = [
    "StructuredLogger",
    "RequestLogEntry",
    "ResponseLogEntry",
    "RequestContext",
    "configure_logging",
]
