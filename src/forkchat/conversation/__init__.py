"""Conversation storage module for forkchat."""

from .store import ConversationStore, TokenCounter

__all__ = [
    "ConversationStore",
    "TokenCounter",
]
