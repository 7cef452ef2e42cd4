"""Structured logging for forkchat."""

import json
import logging
import sys
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TextIO

from ..types import ChatResult, MessageDict


@dataclass
class RequestLogEntry:
    """A structured log entry for a completion request."""

    request_id: str
    timestamp: str
    model: str
    messages: list[dict[str, Any]]
    parameters: dict[str, Any]
    stream: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": "request",
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "model": self.model,
            "messages": self.messages,
            "parameters": self.parameters,
            "stream": self.stream,
        }


@dataclass
class ResponseLogEntry:
    """A structured log entry for a completion result."""

    request_id: str
    timestamp: str
    success: bool
    status: int
    message_id: str | None
    content: str
    tokens: int | None
    latency_ms: float
    diagnostics: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": "response",
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "success": self.success,
            "status": self.status,
            "message_id": self.message_id,
            "content": self.content,
            "tokens": self.tokens,
            "latency_ms": self.latency_ms,
            "diagnostics": self.diagnostics,
            "error": self.error,
        }


class StructuredLogger:
    """
    A structured logger that outputs JSON-formatted log entries.

    Can write to files, stdout, or both.

    Example:
        logger = StructuredLogger(
            log_file="./logs/chat.jsonl",
            redact_patterns=[api_key],
        )

        request_id = logger.log_request("gpt-4o", messages, {"temperature": 1})
        logger.log_result(result, request_id, latency_ms)
    """

    def __init__(
        self,
        log_file: str | Path | None = None,
        include_messages: bool = True,
        include_content: bool = True,
        max_content_length: int | None = None,
        redact_patterns: list[str] | None = None,
        stdout: bool = False,
    ):
        """
        Initialize the structured logger.

        Args:
            log_file: Path to log file (JSONL format). None disables file logging.
            include_messages: Whether to include prompt content in logs
            include_content: Whether to include response content in logs
            max_content_length: Max length of content to log (None = unlimited)
            redact_patterns: Literal strings to redact from logs (e.g., API keys)
            stdout: Whether to also log to stdout
        """
        self._log_file: Path | None = Path(log_file) if log_file else None
        self._include_messages = include_messages
        self._include_content = include_content
        self._max_content_length = max_content_length
        self._redact_patterns = [p for p in (redact_patterns or []) if p]
        self._stdout = stdout
        self._file_handle: TextIO | None = None

        # Ensure log directory exists
        if self._log_file:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(self._log_file, "a")

    def _get_timestamp(self) -> str:
        """Get current timestamp in ISO format."""
        return datetime.now(UTC).isoformat()

    def _redact(self, text: str) -> str:
        """Redact sensitive patterns from text."""
        for pattern in self._redact_patterns:
            text = text.replace(pattern, "[REDACTED]")
        return text

    def _truncate(self, text: str) -> str:
        """Truncate text if max length is set."""
        if self._max_content_length and len(text) > self._max_content_length:
            return text[: self._max_content_length] + "... [truncated]"
        return text

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Write a log entry."""
        json_str = self._redact(json.dumps(entry, default=str))

        if self._file_handle:
            self._file_handle.write(json_str + "\n")
            self._file_handle.flush()

        if self._stdout:
            print(json_str, file=sys.stdout)

    def log_request(
        self,
        model: str,
        messages: Sequence[MessageDict],
        parameters: dict[str, Any] | None = None,
        stream: bool = False,
        request_id: str | None = None,
    ) -> str:
        """
        Log an outgoing completion request.

        Args:
            model: Model name
            messages: The prompt entries being sent
            parameters: Other request parameters
            stream: Whether the request is streamed
            request_id: Optional request ID (generated if not provided)

        Returns:
            The request ID
        """
        if request_id is None:
            request_id = str(uuid.uuid4())

        logged_messages: list[dict[str, Any]] = []
        if self._include_messages:
            for msg in messages:
                logged_messages.append(
                    {"role": msg["role"], "content": self._truncate(msg["content"])}
                )

        entry = RequestLogEntry(
            request_id=request_id,
            timestamp=self._get_timestamp(),
            model=model,
            messages=logged_messages,
            parameters=dict(parameters or {}),
            stream=stream,
        )

        self._write_entry(entry.to_dict())
        return request_id

    def log_result(
        self,
        result: ChatResult,
        request_id: str,
        latency_ms: float,
    ) -> None:
        """
        Log the result of a completion request, successful or not.

        Args:
            result: The chat result
            request_id: The corresponding request ID
            latency_ms: Request latency in milliseconds
        """
        message = result.message
        content = ""
        if self._include_content and message is not None:
            content = self._truncate(message.text)

        entry = ResponseLogEntry(
            request_id=request_id,
            timestamp=self._get_timestamp(),
            success=result.success,
            status=result.status,
            message_id=message.id if message else None,
            content=content,
            tokens=message.tokens if message else None,
            latency_ms=latency_ms,
            diagnostics=len(message.error_messages) if message else 0,
            error=result.error.message if result.error else None,
        )

        self._write_entry(entry.to_dict())

    def log_error(
        self,
        request_id: str,
        error: Exception,
        latency_ms: float,
        parent_message_id: str | None = None,
        stream: bool = False,
    ) -> None:
        """
        Log an exception that escaped a send.

        Transport failures are results and go through log_result. This
        covers what is re-raised to the caller, such as the store backend
        failing while the exchange is persisted.

        Args:
            request_id: The corresponding request ID
            error: The exception that occurred
            latency_ms: Request latency in milliseconds
            parent_message_id: Node the reply would have been attached to
            stream: Whether the request was streamed
        """
        entry = {
            "type": "error",
            "request_id": request_id,
            "timestamp": self._get_timestamp(),
            "parent_message_id": parent_message_id,
            "stream": stream,
            "error": str(error),
            "error_type": type(error).__name__,
            "latency_ms": latency_ms,
        }

        self._write_entry(entry)

    def close(self) -> None:
        """Close the log file."""
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None


@dataclass
class RequestContext:
    """Context for tracking a single request through the pipeline."""

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: float = field(default_factory=time.perf_counter)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        return (time.perf_counter() - self.start_time) * 1000


def configure_logging(level: str) -> None:
    """Apply the configured level to the standard logging setup."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING))
