"""Shared types and exceptions for forkchat."""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, TypedDict

# Type aliases for messages
Role = Literal["system", "user", "assistant"]


class MessageDict(TypedDict):
    """A prompt entry in the shape the completion endpoint expects."""

    role: Role
    content: str


def gen_id() -> str:
    """Generate a new message id."""
    return str(uuid.uuid4())


@dataclass
class Message:
    """
    A single stored conversation turn.

    Messages form a forest: ``parent_message_id`` points at the preceding
    turn, and several children may share a parent. The store owns the
    lifetime of every message, so a parent may disappear through eviction.

    ``tokens`` is a cached token count. When it is not None the tokenizer
    returns it without recomputing, so callers that mutate ``text`` (a
    streamed assistant reply) must refresh it before relying on it.
    """

    text: str
    role: Role
    id: str = field(default_factory=gen_id)
    parent_message_id: str | None = None
    tokens: int | None = None
    # Epoch seconds, assigned by the remote side for assistant messages
    created: int | None = None
    # Characters consumed by the exchange (response text + prompt text)
    len: int | None = None
    error_messages: list[str] = field(default_factory=list)

    def to_prompt(self) -> MessageDict:
        """Convert to a prompt entry."""
        return {"role": self.role, "content": self.text}


@dataclass
class UsageInfo:
    """Token usage information."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_response(cls, usage: dict[str, Any] | None) -> "UsageInfo":
        """Create from the ``usage`` object of a completion response."""
        if not usage:
            return cls()
        return cls(
            prompt_tokens=usage.get("prompt_tokens") or 0,
            completion_tokens=usage.get("completion_tokens") or 0,
            total_tokens=usage.get("total_tokens") or 0,
        )


@dataclass
class ErrorInfo:
    """Description of a failed completion call."""

    message: str
    type: str
    timeout: bool = False
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatResult:
    """
    The outcome of a send.

    Remote failures are reported here with ``success=False`` instead of
    being raised, so callers never need exceptions to detect them.
    """

    success: bool
    status: int
    message: Message | None = None
    error: ErrorInfo | None = None
    # Provider-reported usage; only non-streaming responses carry it
    usage: UsageInfo | None = None
    raw: Any = None

    @property
    def text(self) -> str:
        """Assistant text, or an empty string on failure."""
        return self.message.text if self.message else ""


@dataclass
class StreamDelta:
    """Decoded text for one received chunk, in stream order."""

    text: str
    raw: str


@dataclass
class StreamFinished:
    """Terminal stream event; only produced after every delta."""

    result: ChatResult


StreamEvent = StreamDelta | StreamFinished


# Send input variants, resolved once at the client boundary
@dataclass
class TextPrompt:
    """A new user turn, optionally continuing or resetting a branch."""

    text: str
    system_prompt: str | None = None
    parent_message_id: str | None = None
    kind: Literal["text"] = "text"


@dataclass
class ReplayPrompt:
    """A caller-supplied message list sent as-is and never stored."""

    messages: Sequence[Message]
    kind: Literal["replay"] = "replay"


SendRequest = TextPrompt | ReplayPrompt


def to_send_request(value: "str | Sequence[Message] | SendRequest") -> SendRequest:
    """
    Normalize the accepted send inputs into a SendRequest.

    Args:
        value: Plain text, a list of messages to replay, or a SendRequest

    Returns:
        The tagged request

    Raises:
        ValueError: If the input is empty or of an unsupported type
    """
    if isinstance(value, TextPrompt):
        if not value.text:
            raise ValueError("TextPrompt requires non-empty text")
        return value
    if isinstance(value, ReplayPrompt):
        if not value.messages:
            raise ValueError("ReplayPrompt requires at least one message")
        return value
    if isinstance(value, str):
        if not value:
            raise ValueError("Cannot send an empty message")
        return TextPrompt(text=value)
    if isinstance(value, Sequence) and all(isinstance(m, Message) for m in value):
        if not value:
            raise ValueError("Cannot replay an empty message list")
        return ReplayPrompt(messages=list(value))
    raise ValueError(
        f"Unsupported send input of type {type(value).__name__}; "
        "pass text, a list of Message, TextPrompt or ReplayPrompt"
    )


# Exceptions
class ForkchatError(Exception):
    """Base exception for forkchat errors."""

    pass


class ConfigurationError(ForkchatError):
    """Invalid configuration, raised at construction time."""

    pass


ConfigError = ConfigurationError


class TransportError(ForkchatError):
    """Error while talking to the completion endpoint."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: str | None = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.response = response


class TransportTimeout(TransportError):
    """The request timed out or was aborted before a response arrived."""

    pass


class TransportFailure(TransportError):
    """Connection failure or non-2xx response."""

    pass


class MalformedStreamRecord(ForkchatError):
    """A stream record that could not be decoded. Collected, not raised."""

    def __init__(self, record: str, reason: str):
        super().__init__(f"{reason}: {record[:80]!r}")
        self.record = record
        self.reason = reason
