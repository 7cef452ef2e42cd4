"""
forkchat - Stateful, token-budgeted chat over completion endpoints.

Features:
- Conversations stored as a parent-pointer forest in a bounded LRU store
- Branching: continue, regenerate or reset from any stored message
- Token-budgeted prompt context built from a message's ancestors
- tiktoken-based token counting
- Streaming responses assembled from chunked ``data:`` records
- Structured results instead of exceptions for remote failures
"""

from .cache import KeyValueStore, MemoryStore
from .client import ChatClient
from .config import (
    ChatConfig,
    StoreConfig,
    TokenizerConfig,
    load_env_files,
    validate_api_keys,
)
from .conversation import ConversationStore
from .core.transport import HttpTransport
from .observability import StructuredLogger
from .streaming import StreamAssembler
from .tokenizer import Tokenizer
from .types import (
    ChatResult,
    ConfigError,
    ConfigurationError,
    ErrorInfo,
    # Exceptions
    ForkchatError,
    MalformedStreamRecord,
    # Messages
    Message,
    MessageDict,
    ReplayPrompt,
    Role,
    SendRequest,
    StreamDelta,
    StreamEvent,
    StreamFinished,
    TextPrompt,
    TransportError,
    TransportFailure,
    TransportTimeout,
    UsageInfo,
    to_send_request,
)

__version__ = "0.1.0"

__all__ = [
    # Main client
    "ChatClient",
    # Configuration
    "ChatConfig",
    "StoreConfig",
    "TokenizerConfig",
    "load_env_files",
    "validate_api_keys",
    # Components
    "Tokenizer",
    "ConversationStore",
    "KeyValueStore",
    "MemoryStore",
    "StreamAssembler",
    "HttpTransport",
    "StructuredLogger",
    # Messages and requests
    "Message",
    "MessageDict",
    "Role",
    "TextPrompt",
    "ReplayPrompt",
    "SendRequest",
    "to_send_request",
    # Results
    "ChatResult",
    "ErrorInfo",
    "UsageInfo",
    "StreamDelta",
    "StreamFinished",
    "StreamEvent",
    # Exceptions
    "ForkchatError",
    "ConfigurationError",
    "ConfigError",
    "TransportError",
    "TransportTimeout",
    "TransportFailure",
    "MalformedStreamRecord",
]
