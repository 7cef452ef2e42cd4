"""Conversation storage as a parent-pointer forest in a bounded store."""

import logging
from collections.abc import Sequence
from typing import Protocol

from ..cache import KeyValueStore, MemoryStore
from ..config import StoreConfig
from ..types import Message, MessageDict

logger = logging.getLogger(__name__)


class TokenCounter(Protocol):
    """Anything that can count tokens for a message."""

    def get_token_count(self, value: Message) -> int: ...


class ConversationStore:
    """
    Stores messages by id and rebuilds conversations from parent links.

    A conversation is never materialized: it is the path obtained by
    following ``parent_message_id`` from any message back to a root.
    Because the backing store evicts, a parent may be missing at any
    time; every walk treats that as the end of the conversation.

    All walks are capped by ``max_find_depth`` so a corrupted or cyclic
    chain cannot loop forever.

    Compound operations (walk-then-delete, read-then-append) are not
    atomic. Callers writing to the same branch concurrently must
    serialize those writes themselves.

    Example:
        store = ConversationStore(max_keys=1000)
        await store.set([system, user, assistant])

        context = await store.find_context(
            assistant.id,
            tokenizer=tokenizer,
            limit=1000,
            available_tokens=3000,
        )
    """

    def __init__(
        self,
        backend: KeyValueStore | None = None,
        max_keys: int = 100_000,
        max_find_depth: int = 20,
        debug: bool = False,
    ):
        """
        Initialize the conversation store.

        Args:
            backend: Storage backend (defaults to MemoryStore(max_keys))
            max_keys: Capacity of the default backend
            max_find_depth: Maximum nodes evaluated by a single walk
            debug: Log store size and remaining budget
        """
        if max_find_depth <= 0:
            raise ValueError("max_find_depth must be positive")
        self._backend = backend if backend is not None else MemoryStore(max_size=max_keys)
        self._max_find_depth = max_find_depth
        self._debug = debug

        if self._debug:
            logger.info(
                f"ConversationStore: backend={type(self._backend).__name__}, "
                f"max_find_depth={max_find_depth}"
            )

    @classmethod
    def from_config(cls, config: StoreConfig, debug: bool = False) -> "ConversationStore":
        """Create a store from a StoreConfig."""
        return cls(
            max_keys=config.max_keys,
            max_find_depth=config.max_find_depth,
            debug=debug,
        )

    @property
    def max_find_depth(self) -> int:
        """Traversal cap for every walk."""
        return self._max_find_depth

    @property
    def backend(self) -> KeyValueStore:
        """The underlying key-value store."""
        return self._backend

    async def get(self, id: str) -> Message | None:
        """Get a message by id."""
        return await self._backend.get(id)

    async def set(self, messages: Sequence[Message]) -> None:
        """
        Store messages in order, replacing any with the same id.

        Each insertion touches recency, so the last message of the
        sequence is the most recently used.
        """
        for message in messages:
            await self._backend.set(message.id, message)

        if self._debug:
            logger.debug(f"Store size: {await self._backend.size()}")

    async def has(self, id: str) -> bool:
        """Check if the id exists in the store."""
        return await self._backend.has(id)

    async def delete(self, id: str) -> bool:
        """Delete one message; True if it was present."""
        return await self._backend.delete(id)

    async def clear_conversation(self, id: str | None) -> int:
        """
        Delete a branch from ``id`` up towards its root.

        Used when a new system prompt starts a fresh context. The walk
        stops at a missing node, a node without a parent, or after
        ``max_find_depth`` visits. Sibling branches are left untouched,
        although a shared ancestor is removed with the branch.

        Args:
            id: The leaf id of the branch to delete

        Returns:
            Number of messages deleted
        """
        current = id
        visited = 0
        deleted = 0

        while current and visited < self._max_find_depth:
            visited += 1
            message = await self._backend.get(current)
            if message is None:
                break
            if await self._backend.delete(message.id):
                deleted += 1
            current = message.parent_message_id

        if self._debug:
            logger.debug(f"Cleared {deleted} messages from conversation ending at {id}")
        return deleted

    async def find_context(
        self,
        id: str | None,
        tokenizer: TokenCounter,
        limit: int,
        available_tokens: int,
        ignore_assistant: bool = False,
    ) -> list[MessageDict]:
        """
        Build a token-budgeted prompt context by walking ancestors.

        Starting at ``id`` and moving to each parent:

        - assistant messages are skipped when ``ignore_assistant`` is set,
          without consuming depth or budget;
        - a message over ``limit`` tokens is dropped, and the walk continues;
          it still counts toward ``max_find_depth``;
        - a message larger than the remaining budget ends the walk;
        - anything else is prepended and its tokens are spent.

        The result is the longest recent run of turns that fits, oldest
        first. Its total token count never exceeds ``available_tokens``.

        Args:
            id: Message to start from (usually the new turn's parent)
            tokenizer: Token counter; cached ``tokens`` are trusted
            limit: Per-message token ceiling
            available_tokens: Total budget for the returned context
            ignore_assistant: Leave prior assistant answers out of the prompt

        Returns:
            Prompt entries ordered oldest to newest
        """
        current = id
        depth = self._max_find_depth
        remaining = available_tokens
        seen: set[str] = set()
        messages: list[MessageDict] = []

        while current and depth > 0:
            if current in seen:
                logger.warning(f"Cycle detected in conversation at message {current}")
                break
            seen.add(current)

            message = await self._backend.get(current)
            if message is None:
                break

            if not (ignore_assistant and message.role == "assistant"):
                # Over-limit messages consume depth even though they are dropped
                depth -= 1
                tokens = tokenizer.get_token_count(message)
                if tokens <= limit:
                    if tokens > remaining:
                        break
                    messages.insert(0, message.to_prompt())
                    remaining -= tokens

            current = message.parent_message_id

        if self._debug:
            logger.debug(f"Context: {len(messages)} messages, availableTokens={remaining}")
        return messages

    async def get_messages(self, id: str | None, max_depth: int | None = None) -> list[Message]:
        """
        Get the stored branch ending at ``id``, oldest first.

        Args:
            id: The leaf message id
            max_depth: Maximum messages to return (defaults to max_find_depth)

        Returns:
            The branch's messages, without any token budgeting
        """
        depth = max_depth if max_depth is not None else self._max_find_depth
        current = id
        seen: set[str] = set()
        messages: list[Message] = []

        while current and len(messages) < depth and current not in seen:
            seen.add(current)
            message = await self._backend.get(current)
            if message is None:
                break
            messages.insert(0, message)
            current = message.parent_message_id

        return messages

    async def clear_all(self) -> int:
        """Remove every stored message."""
        return await self._backend.clear()

    async def size(self) -> int:
        """Number of stored messages."""
        return await self._backend.size()

    async def close(self) -> None:
        """Release backend resources."""
        await self._backend.close()
