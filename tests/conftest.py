"""Pytest configuration and fixtures."""

import os
from pathlib import Path

import pytest

from forkchat import Tokenizer


class WhitespaceEncoder:
    """Counts one token per whitespace-separated word."""

    def encode(self, text: str) -> list[int]:
        return list(range(len(text.split())))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clean environment variables before each test."""
    # Remove any FORKCHAT_ and provider key env vars that might interfere
    for key in list(os.environ.keys()):
        if key.startswith("FORKCHAT_") or key in ("OPENAI_API_KEY", "AZURE_OPENAI_API_KEY"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def word_tokenizer() -> Tokenizer:
    """A tokenizer with predictable counts that needs no encoding download."""
    return Tokenizer(encoder=WhitespaceEncoder())


@pytest.fixture
def mock_env_file(tmp_path: Path) -> Path:
    """Create a temporary .env file."""
    env_file = tmp_path / ".env"
    env_file.write_text(
        """
OPENAI_API_KEY=sk-test-key
FORKCHAT_MODEL=gpt-4o-mini
FORKCHAT_LOG_LEVEL=DEBUG
FORKCHAT_MAX_TOKENS=2048
"""
    )
    return env_file
