"""Pydantic models for the completion endpoint's JSON payloads.

Only the fields this package consumes are declared; anything else the
provider sends is ignored.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from ..types import UsageInfo


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ResponseMessage(_Payload):
    role: str | None = None
    content: str | None = None


class Choice(_Payload):
    index: int = 0
    message: ResponseMessage | None = None
    finish_reason: str | None = None


class Usage(_Payload):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class ChatCompletion(_Payload):
    """A non-streaming chat completion response."""

    id: str | None = None
    created: int | None = None
    model: str | None = None
    choices: list[Choice] = []
    usage: Usage | None = None

    @property
    def content(self) -> str:
        """Text of the first choice, or an empty string."""
        if self.choices and self.choices[0].message:
            return self.choices[0].message.content or ""
        return ""

    @property
    def token_count(self) -> int | None:
        """Total tokens, falling back to completion tokens."""
        if self.usage is None:
            return None
        if self.usage.total_tokens is not None:
            return self.usage.total_tokens
        return self.usage.completion_tokens

    def usage_info(self) -> UsageInfo | None:
        """Usage as a UsageInfo, or None when the response has none."""
        if self.usage is None:
            return None
        return UsageInfo.from_response(self.usage.model_dump())


class Delta(_Payload):
    role: str | None = None
    content: str | None = None


class ChunkChoice(_Payload):
    index: int = 0
    delta: Delta | None = None
    finish_reason: str | None = None


class ChatCompletionChunk(_Payload):
    """One ``data:`` record of a streaming response."""

    id: str | None = None
    created: int | None = None
    choices: list[ChunkChoice] = []

    @property
    def content(self) -> str:
        """Concatenated delta text of every choice."""
        return "".join(
            choice.delta.content
            for choice in self.choices
            if choice.delta is not None and choice.delta.content
        )


class ErrorDetail(_Payload):
    message: str | None = None
    type: str | None = None
    code: str | int | None = None
    param: str | None = None


class ErrorBody(_Payload):
    """The ``{"error": {...}}`` body of a failed request."""

    error: ErrorDetail | None = None


def parse_error_body(data: Any) -> ErrorDetail | None:
    """
    Extract the provider error from a decoded or raw error body.

    Returns None when the body carries no recognizable error.
    """
    try:
        if isinstance(data, str | bytes):
            body = ErrorBody.model_validate_json(data)
        else:
            body = ErrorBody.model_validate(data)
    except ValidationError:
        return None
    return body.error
