"""Token counting for budget accounting."""

import re
from collections.abc import Callable, Mapping
from typing import Protocol

import tiktoken

from .config import TokenizerConfig
from .types import ConfigurationError, Message

Replacement = str | Callable[[re.Match[str]], str]

# Cache for tokenizer encodings
_ENCODING_CACHE: dict[str, tiktoken.Encoding] = {}


class Encoder(Protocol):
    """Anything that turns text into a list of token ids."""

    def encode(self, text: str) -> list[int]: ...


def _get_encoding(name: str) -> tiktoken.Encoding:
    """Get or create a tiktoken encoding by name."""
    if name not in _ENCODING_CACHE:
        try:
            _ENCODING_CACHE[name] = tiktoken.get_encoding(name)
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Unknown tokenizer encoding: {name!r}") from e
    return _ENCODING_CACHE[name]


class Tokenizer:
    """
    Counts tokens for one named byte-pair encoding.

    Text matching ``replace_pattern`` (the ``<|endoftext|>`` sentinel by
    default) is substituted before counting. Message-like values that
    already carry a ``tokens`` count are trusted as-is.

    Example:
        tokenizer = Tokenizer()
        tokenizer.get_token_count("hello world")  # 2
        tokenizer.get_token_count(Message(text="hi", role="user", tokens=7))  # 7
    """

    def __init__(
        self,
        encoding: str = "cl100k_base",
        replace_pattern: str | re.Pattern[str] = r"<\|endoftext\|>",
        replacement: Replacement = "",
        encoder: Encoder | None = None,
    ):
        """
        Initialize the tokenizer.

        Args:
            encoding: tiktoken encoding name
            replace_pattern: Pattern stripped from text before counting
            replacement: Replacement string, or a callable receiving the match
            encoder: Pre-built encoder used instead of resolving ``encoding``

        Raises:
            ConfigurationError: If the encoding name is unknown
        """
        self._encoding_name = encoding
        self._encoder: Encoder = encoder if encoder is not None else _get_encoding(encoding)
        self._replace_re = re.compile(replace_pattern)
        self._replacement = replacement

    @classmethod
    def from_config(cls, config: TokenizerConfig) -> "Tokenizer":
        """Create a tokenizer from a TokenizerConfig."""
        return cls(
            encoding=config.encoding,
            replace_pattern=config.replace_pattern,
            replacement=config.replacement,
        )

    @property
    def encoding_name(self) -> str:
        """Name of the encoding this tokenizer counts with."""
        return self._encoding_name

    def get_token_count(self, value: str | Message | Mapping[str, object]) -> int:
        """
        Count tokens in text or a message-like value.

        Args:
            value: Plain text, a Message, or a mapping with ``text``/``tokens``

        Returns:
            The cached ``tokens`` when present, otherwise the encoded length
        """
        if isinstance(value, Message):
            if value.tokens is not None:
                return value.tokens
            text = value.text
        elif isinstance(value, Mapping):
            tokens = value.get("tokens")
            if tokens is not None:
                return int(tokens)  # type: ignore[call-overload]
            text = str(value.get("text", ""))
        else:
            text = value

        return len(self._encode(self._replace_re.sub(self._replacement, text)))

    def _encode(self, text: str) -> list[int]:
        if isinstance(self._encoder, tiktoken.Encoding):
            # Special-token text is counted as ordinary text instead of raising
            return self._encoder.encode(text, disallowed_special=())
        return self._encoder.encode(text)
