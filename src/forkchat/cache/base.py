"""Base key-value store protocol for conversation storage."""

from abc import ABC, abstractmethod

from ..types import Message


class KeyValueStore(ABC):
    """
    Abstract base class for message storage backends.

    Backends are addressed by message id. Every method is async so the
    conversation store can sit on storage that performs I/O.
    """

    @abstractmethod
    async def get(self, key: str) -> Message | None:
        """
        Retrieve a stored message.

        Args:
            key: The message id

        Returns:
            The stored Message, or None if not found
        """
        pass

    @abstractmethod
    async def set(self, key: str, message: Message) -> None:
        """
        Store a message, replacing any previous value for the key.

        Args:
            key: The message id
            message: The message to store
        """
        pass

    @abstractmethod
    async def has(self, key: str) -> bool:
        """Check whether a key is present."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a stored entry.

        Args:
            key: The message id

        Returns:
            True if the key existed and was deleted
        """
        pass

    @abstractmethod
    async def clear(self) -> int:
        """
        Clear all entries.

        Returns:
            Number of entries cleared
        """
        pass

    @abstractmethod
    async def size(self) -> int:
        """
        Get the number of stored entries.

        Returns:
            Number of entries in the store
        """
        pass

    async def close(self) -> None:
        """Close any resources held by the backend."""
        pass
