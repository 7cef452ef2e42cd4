"""Prompt message helpers."""

from collections.abc import Sequence
from datetime import date

from ..types import MessageDict, Role

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer as concisely as possible.\nCurrent date: {today}"
)


def system_message(content: str) -> MessageDict:
    """Create a system prompt entry."""
    return {"role": "system", "content": content}


def default_system_message(today: date | None = None) -> MessageDict:
    """The system entry injected when a prompt has none."""
    today = today or date.today()
    return system_message(DEFAULT_SYSTEM_PROMPT.format(today=today.isoformat()))


def concat_messages(messages: Sequence[MessageDict]) -> str:
    """Concatenate prompt contents, used for length and token totals."""
    return "".join(m["content"] for m in messages)


def validate_messages(messages: Sequence[MessageDict]) -> list[str]:
    """
    Check caller-supplied prompt entries before they are sent as-is.

    Returns list of validation errors (empty if valid).
    """
    errors: list[str] = []
    valid_roles: set[Role] = {"system", "user", "assistant"}

    for i, msg in enumerate(messages):
        role = msg.get("role")
        if role not in valid_roles:
            errors.append(
                f"Message {i}: invalid role '{role}', must be one of {sorted(valid_roles)}"
            )

        if not isinstance(msg.get("content"), str):
            errors.append(f"Message {i}: content must be a string")

    return errors
