"""Configuration management and environment loading."""

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv

from .types import ConfigError

OPENAI_CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"

Vendor = Literal["openai", "azure"]


@dataclass
class StoreConfig:
    """Configuration for the conversation store."""

    # Maximum number of messages kept before LRU eviction
    max_keys: int = 100_000
    # Traversal cap for ancestor walks
    max_find_depth: int = 20

    def __post_init__(self) -> None:
        if self.max_keys <= 0:
            raise ConfigError("max_keys must be positive")
        if self.max_find_depth <= 0:
            raise ConfigError("max_find_depth must be positive")


@dataclass
class TokenizerConfig:
    """Configuration for token counting."""

    encoding: str = "cl100k_base"
    # Text matching this pattern is replaced before counting
    replace_pattern: str | re.Pattern[str] = r"<\|endoftext\|>"
    replacement: str | Callable[[re.Match[str]], str] = ""


@dataclass
class ChatConfig:
    """Main configuration for ChatClient."""

    api_key: str | None = None
    model: str = "gpt-3.5-turbo"
    vendor: Vendor = "openai"

    # Endpoints
    base_url: str = OPENAI_CHAT_COMPLETIONS_URL
    azure_endpoint: str | None = None
    azure_deployment: str | None = None
    azure_api_version: str | None = None

    # Request defaults
    temperature: float = 1.0
    timeout: float = 600.0
    extra_headers: dict[str, str] = field(default_factory=dict)
    extra_body: dict[str, Any] = field(default_factory=dict)

    # Token budget
    max_tokens: int = 4096
    limit_tokens_in_a_message: int = 1000
    ignore_server_messages_in_prompt: bool = False

    store: StoreConfig = field(default_factory=StoreConfig)
    tokenizer: TokenizerConfig = field(default_factory=TokenizerConfig)

    # Logging
    debug: bool = False
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if self.vendor not in ("openai", "azure"):
            raise ConfigError(f"Unknown vendor: {self.vendor}")
        if self.max_tokens <= 0:
            raise ConfigError("max_tokens must be positive")
        if self.limit_tokens_in_a_message <= 0:
            raise ConfigError("limit_tokens_in_a_message must be positive")

    def chat_url(self) -> str:
        """Resolve the chat completions URL for the configured vendor."""
        if self.vendor == "openai":
            return self.base_url

        missing = [
            name
            for name, value in (
                ("azure_endpoint", self.azure_endpoint),
                ("azure_deployment", self.azure_deployment),
                ("azure_api_version", self.azure_api_version),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Azure vendor requires: {', '.join(missing)}")
        return (
            f"https://{self.azure_endpoint}/openai/deployments/{self.azure_deployment}"
            f"/chat/completions?api-version={self.azure_api_version}"
        )

    @classmethod
    def from_env(cls) -> "ChatConfig":
        """Create config from environment variables."""
        config = cls()

        # Read config from FORKCHAT_ prefixed env vars
        if model := os.getenv("FORKCHAT_MODEL"):
            config.model = model

        if vendor := os.getenv("FORKCHAT_VENDOR"):
            vendor = vendor.lower()
            if vendor not in ("openai", "azure"):
                raise ConfigError(f"Invalid FORKCHAT_VENDOR: {vendor}")
            config.vendor = vendor  # type: ignore[assignment]

        config.api_key = (
            os.getenv("FORKCHAT_API_KEY")
            or (
                os.getenv("AZURE_OPENAI_API_KEY")
                if config.vendor == "azure"
                else os.getenv("OPENAI_API_KEY")
            )
        )

        if endpoint := os.getenv("FORKCHAT_AZURE_ENDPOINT"):
            config.azure_endpoint = endpoint
        if deployment := os.getenv("FORKCHAT_AZURE_DEPLOYMENT"):
            config.azure_deployment = deployment
        if api_version := os.getenv("FORKCHAT_AZURE_API_VERSION"):
            config.azure_api_version = api_version

        config.max_tokens = _int_env("FORKCHAT_MAX_TOKENS", config.max_tokens)
        config.limit_tokens_in_a_message = _int_env(
            "FORKCHAT_LIMIT_TOKENS_IN_A_MESSAGE", config.limit_tokens_in_a_message
        )
        config.store = StoreConfig(
            max_keys=_int_env("FORKCHAT_MAX_KEYS", config.store.max_keys),
            max_find_depth=_int_env("FORKCHAT_MAX_FIND_DEPTH", config.store.max_find_depth),
        )

        if os.getenv("FORKCHAT_IGNORE_SERVER_MESSAGES", "").lower() in ("1", "true", "yes"):
            config.ignore_server_messages_in_prompt = True

        if encoding := os.getenv("FORKCHAT_ENCODING"):
            config.tokenizer.encoding = encoding

        if timeout := os.getenv("FORKCHAT_TIMEOUT"):
            try:
                config.timeout = float(timeout)
            except ValueError:
                raise ConfigError(f"Invalid FORKCHAT_TIMEOUT: {timeout}")

        if log_level := os.getenv("FORKCHAT_LOG_LEVEL"):
            config.log_level = log_level.upper()

        if os.getenv("FORKCHAT_DEBUG", "").lower() in ("1", "true", "yes"):
            config.debug = True

        return config


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"Invalid {name}: {value}")


def load_env_files(
    env_file: str | Path | None = None,
    env_files: list[str | Path] | None = None,
) -> None:
    """
    Load environment variables from .env files.

    Args:
        env_file: Single env file to load
        env_files: Multiple env files to load (later files override earlier)
    """
    files_to_load: list[Path] = []

    if env_files:
        files_to_load.extend(Path(f) for f in env_files)
    elif env_file:
        files_to_load.append(Path(env_file))
    else:
        # Default: try to load .env from current directory
        default_env = Path(".env")
        if default_env.exists():
            files_to_load.append(default_env)

    # Load files in order (later overrides earlier)
    for file_path in files_to_load:
        if file_path.exists():
            load_dotenv(file_path, override=True)


def validate_api_keys(required_providers: list[str] | None = None) -> dict[str, bool]:
    """
    Check which API keys are configured.

    Args:
        required_providers: If provided, raise error if any are missing

    Returns:
        Dict mapping provider names to whether their key is set
    """
    key_mapping = {
        "forkchat": "FORKCHAT_API_KEY",
        "openai": "OPENAI_API_KEY",
        "azure": "AZURE_OPENAI_API_KEY",
    }

    results = {}
    for provider, env_var in key_mapping.items():
        results[provider] = bool(os.getenv(env_var))

    if required_providers:
        missing = [p for p in required_providers if not results.get(p)]
        if missing:
            raise ConfigError(
                f"Missing API keys for providers: {', '.join(missing)}. "
                f"Set the corresponding environment variables."
            )

    return results
