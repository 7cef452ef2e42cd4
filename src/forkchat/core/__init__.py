"""Core request and message handling."""

from .messages import (
    concat_messages,
    default_system_message,
    system_message,
    validate_messages,
)
from .transport import HttpTransport, StreamResponse, TransportResponse, error_result

__all__ = [
    "HttpTransport",
    "StreamResponse",
    "TransportResponse",
    "error_result",
    "concat_messages",
    "default_system_message",
    "system_message",
    "validate_messages",
]
