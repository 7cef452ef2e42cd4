"""Bounded message storage for forkchat."""

from .base import KeyValueStore
from .memory import MemoryStore

__all__ = [
    "KeyValueStore",
    "MemoryStore",
]
