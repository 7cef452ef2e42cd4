"""Main ChatClient class."""

import inspect
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from .config import ChatConfig, Vendor, load_env_files
from .conversation import ConversationStore
from .core.messages import (
    concat_messages,
    default_system_message,
    system_message,
    validate_messages,
)
from .core.payloads import ChatCompletion
from .core.transport import HttpTransport, error_result
from .observability import RequestContext, StructuredLogger, configure_logging
from .streaming import StreamAssembler
from .tokenizer import Tokenizer
from .types import (
    ChatResult,
    ErrorInfo,
    Message,
    MessageDict,
    ReplayPrompt,
    SendRequest,
    StreamDelta,
    StreamEvent,
    StreamFinished,
    TextPrompt,
    TransportError,
    to_send_request,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], Awaitable[None] | None]


@dataclass
class _Turn:
    """A prepared exchange: the prompt plus the messages to persist."""

    prompt: list[MessageDict]
    # None for replayed prompts, which are never stored
    user: Message | None
    system: Message | None
    assistant_parent_id: str | None


class ChatClient:
    """
    Stateful multi-turn chat over a completion endpoint.

    Each call sends a new user turn with as much of its conversation as
    fits the token budget, then stores the user and assistant messages
    so a later call can continue from the returned message id.

    Remote failures never raise: they come back as a ChatResult with
    ``success=False``.

    Example:
        async with ChatClient(api_key="sk-...") as client:
            first = await client.send_message("What is Python?")
            follow_up = await client.send_message(
                TextPrompt("How do I install it?", parent_message_id=first.message.id)
            )

            async for event in client.stream_message("Tell me a story"):
                if isinstance(event, StreamDelta):
                    print(event.text, end="")
    """

    def __init__(
        self,
        config: ChatConfig | None = None,
        *,
        # Environment
        env_file: str | Path | None = None,
        env_files: list[str | Path] | None = None,
        # Overrides for the env-based config
        api_key: str | None = None,
        model: str | None = None,
        vendor: Vendor | None = None,
        max_tokens: int | None = None,
        limit_tokens_in_a_message: int | None = None,
        ignore_server_messages_in_prompt: bool | None = None,
        timeout: float | None = None,
        debug: bool = False,
        log_level: str | None = None,
        # Collaborators
        tokenizer: Tokenizer | None = None,
        store: ConversationStore | None = None,
        transport: HttpTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
        structured_logger: StructuredLogger | None = None,
    ):
        """
        Initialize the client.

        Args:
            config: Full configuration object (overrides individual params)
            env_file: Path to .env file to load
            env_files: Multiple .env files to load (later overrides earlier)
            api_key: API key for the completion endpoint
            model: Default model name
            vendor: "openai" (bearer auth) or "azure" (api-key header)
            max_tokens: Total prompt token budget
            limit_tokens_in_a_message: Messages above this are left out of the prompt
            ignore_server_messages_in_prompt: Leave prior assistant answers out
            timeout: Request timeout in seconds
            debug: Log prompts, store size and remaining budget
            log_level: Logging level
            tokenizer: Token counter (built from config.tokenizer if omitted)
            store: Conversation store (built from config.store if omitted)
            transport: HTTP transport (built from timeout/http_client if omitted)
            http_client: httpx client for the default transport
            structured_logger: JSONL logger for requests and results

        Raises:
            ConfigurationError: If the tokenizer encoding or endpoint config is invalid
        """
        load_env_files(env_file, env_files)

        if config:
            self._config = config
        else:
            # Start with env-based config, then override with explicit params
            self._config = ChatConfig.from_env()

            if api_key:
                self._config.api_key = api_key
            if model:
                self._config.model = model
            if vendor:
                self._config.vendor = vendor
            if max_tokens is not None:
                self._config.max_tokens = max_tokens
            if limit_tokens_in_a_message is not None:
                self._config.limit_tokens_in_a_message = limit_tokens_in_a_message
            if ignore_server_messages_in_prompt is not None:
                self._config.ignore_server_messages_in_prompt = ignore_server_messages_in_prompt
            if timeout is not None:
                self._config.timeout = timeout
            if debug:
                self._config.debug = debug
            if log_level:
                self._config.log_level = log_level

        configure_logging(self._config.log_level)

        self._url = self._config.chat_url()
        self._tokenizer = tokenizer or Tokenizer.from_config(self._config.tokenizer)
        self._store = store or ConversationStore.from_config(
            self._config.store, debug=self._config.debug
        )
        self._transport = transport or HttpTransport(
            timeout=self._config.timeout, client=http_client
        )
        self._structured_logger = structured_logger

        if self._config.debug:
            logger.info(
                f"ChatClient: vendor={self._config.vendor}, model={self._config.model}, "
                f"max_tokens={self._config.max_tokens}, "
                f"encoding={self._tokenizer.encoding_name}"
            )

    async def send_message(
        self,
        request: str | Sequence[Message] | SendRequest,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
        temperature: float | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        limit_tokens_in_a_message: int | None = None,
        ignore_server_messages_in_prompt: bool | None = None,
    ) -> ChatResult:
        """
        Send a message and store the exchange.

        Args:
            request: Text, a list of messages to replay, or a SendRequest
            streaming: Stream the response (implied by on_progress)
            on_progress: Called with (delta_text, raw_chunk) per received chunk
            temperature: Sampling temperature (config default if omitted)
            model: Model override for this call
            max_tokens: Token budget override for this call
            limit_tokens_in_a_message: Per-message ceiling override
            ignore_server_messages_in_prompt: Override for this call

        Returns:
            ChatResult with the assistant message, or the failure

        Raises:
            ValueError: If the request is empty or of an unsupported type
        """
        send = to_send_request(request)
        options = {
            "temperature": temperature,
            "model": model,
            "max_tokens": max_tokens,
            "limit_tokens_in_a_message": limit_tokens_in_a_message,
            "ignore_server_messages_in_prompt": ignore_server_messages_in_prompt,
        }

        if not (streaming or on_progress):
            return await self._complete(send, **options)

        result: ChatResult | None = None
        async for event in self.stream_message(send, **options):
            if isinstance(event, StreamDelta):
                if on_progress is not None:
                    outcome = on_progress(event.text, event.raw)
                    if inspect.isawaitable(outcome):
                        await outcome
            else:
                result = event.result
        if result is None:
            raise RuntimeError("Stream ended without a final result")
        return result

    async def stream_message(
        self,
        request: str | Sequence[Message] | SendRequest,
        *,
        temperature: float | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        limit_tokens_in_a_message: int | None = None,
        ignore_server_messages_in_prompt: bool | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Send a message and stream the response.

        Yields a StreamDelta per received chunk in stream order, then
        exactly one StreamFinished. The exchange is stored before
        StreamFinished is yielded, and only if the stream succeeded.
        """
        send = to_send_request(request)
        turn = await self._prepare(
            send, max_tokens, limit_tokens_in_a_message, ignore_server_messages_in_prompt
        )
        resolved_model = model or self._config.model
        body = self._build_body(turn.prompt, resolved_model, temperature, stream=True)
        ctx = self._log_request(turn.prompt, resolved_model, body, stream=True)

        assistant = Message(
            text="",
            role="assistant",
            parent_message_id=turn.assistant_parent_id,
            created=int(time.time()),
        )
        assembler = StreamAssembler(assistant, turn.prompt, self._tokenizer)

        result: ChatResult | None = None
        try:
            async with self._transport.stream(self._url, self._headers(), body) as response:
                async for event in assembler.assemble(response.chunks, status=response.status):
                    if isinstance(event, StreamFinished):
                        result = event.result
                    else:
                        yield event
            if result is None:
                raise RuntimeError("Stream ended without a final result")
            if result.message is not None:
                await self._persist(turn, result.message)
        except TransportError as e:
            result = error_result(e)
        except Exception as e:
            self._log_error(e, ctx, turn, stream=True)
            raise

        self._log_result(result, ctx)
        yield StreamFinished(result)

    async def _complete(
        self,
        send: SendRequest,
        temperature: float | None,
        model: str | None,
        max_tokens: int | None,
        limit_tokens_in_a_message: int | None,
        ignore_server_messages_in_prompt: bool | None,
    ) -> ChatResult:
        turn = await self._prepare(
            send, max_tokens, limit_tokens_in_a_message, ignore_server_messages_in_prompt
        )
        resolved_model = model or self._config.model
        body = self._build_body(turn.prompt, resolved_model, temperature, stream=False)
        ctx = self._log_request(turn.prompt, resolved_model, body, stream=False)

        try:
            result = await self._request(turn, body)
        except Exception as e:
            self._log_error(e, ctx, turn, stream=False)
            raise

        self._log_result(result, ctx)
        return result

    async def _request(self, turn: _Turn, body: dict[str, Any]) -> ChatResult:
        try:
            response = await self._transport.post_json(self._url, self._headers(), body)
        except TransportError as e:
            return error_result(e)

        try:
            completion = ChatCompletion.model_validate(response.data)
        except ValidationError as e:
            return ChatResult(
                success=False,
                status=response.status,
                error=ErrorInfo(message=f"Unexpected response shape: {e}", type="invalid_response"),
                raw=response.data,
            )

        content = completion.content
        assistant = Message(
            text=content,
            role="assistant",
            parent_message_id=turn.assistant_parent_id,
            created=completion.created,
            tokens=completion.token_count,
            len=len(content) + len(concat_messages(turn.prompt)),
        )
        await self._persist(turn, assistant)

        return ChatResult(
            success=True,
            status=response.status,
            message=assistant,
            usage=completion.usage_info(),
            raw=response.data,
        )

    async def _prepare(
        self,
        send: SendRequest,
        max_tokens: int | None,
        limit_tokens_in_a_message: int | None,
        ignore_server_messages_in_prompt: bool | None,
    ) -> _Turn:
        if isinstance(send, ReplayPrompt):
            messages = list(send.messages)
            prompt = [m.to_prompt() for m in messages]
            errors = validate_messages(prompt)
            if errors:
                raise ValueError(f"Invalid replayed messages: {'; '.join(errors)}")
            return _Turn(
                prompt=prompt,
                user=None,
                system=None,
                assistant_parent_id=messages[-1].id,
            )

        parent_id = send.parent_message_id
        if send.system_prompt:
            # A new system prompt starts a fresh context
            if parent_id:
                await self._store.clear_conversation(parent_id)
            parent_id = None

        user = Message(
            text=send.text,
            role="user",
            parent_message_id=parent_id,
            tokens=self._tokenizer.get_token_count(send.text),
        )
        prompt = await self._make_conversation(
            user,
            send,
            max_tokens if max_tokens is not None else self._config.max_tokens,
            (
                limit_tokens_in_a_message
                if limit_tokens_in_a_message is not None
                else self._config.limit_tokens_in_a_message
            ),
            (
                ignore_server_messages_in_prompt
                if ignore_server_messages_in_prompt is not None
                else self._config.ignore_server_messages_in_prompt
            ),
        )

        system = None
        if send.system_prompt:
            system = Message(
                text=send.system_prompt,
                role="system",
                tokens=self._tokenizer.get_token_count(send.system_prompt),
            )

        return _Turn(prompt=prompt, user=user, system=system, assistant_parent_id=user.id)

    async def _make_conversation(
        self,
        user: Message,
        send: TextPrompt,
        max_tokens: int,
        limit: int,
        ignore_assistant: bool,
    ) -> list[MessageDict]:
        """Build the request's message list for a new user turn."""
        used_tokens = self._tokenizer.get_token_count(user)

        if send.system_prompt:
            messages = [system_message(send.system_prompt)]
        else:
            messages = await self._store.find_context(
                user.parent_message_id,
                tokenizer=self._tokenizer,
                limit=limit,
                available_tokens=max_tokens - used_tokens,
                ignore_assistant=ignore_assistant,
            )

        if not messages or messages[0]["role"] != "system":
            messages.insert(0, default_system_message())

        messages.append(user.to_prompt())

        if self._config.debug:
            logger.debug(f"History messages: {messages}")
        return messages

    async def _persist(self, turn: _Turn, assistant: Message) -> None:
        if turn.user is None:
            return

        to_store = [turn.user, assistant]
        if turn.system is not None:
            turn.user.parent_message_id = turn.system.id
            to_store.insert(0, turn.system)
        await self._store.set(to_store)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            if self._config.vendor == "azure":
                headers["api-key"] = self._config.api_key
            else:
                headers["Authorization"] = f"Bearer {self._config.api_key}"
        headers.update(self._config.extra_headers)
        return headers

    def _build_body(
        self,
        prompt: list[MessageDict],
        model: str,
        temperature: float | None,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": prompt,
            "temperature": temperature if temperature is not None else self._config.temperature,
        }
        # Azure selects the model through the deployment in the URL
        if self._config.vendor == "openai":
            body["model"] = model
        if stream:
            body["stream"] = True
        body.update(self._config.extra_body)
        return body

    def _log_request(
        self,
        prompt: list[MessageDict],
        model: str,
        body: dict[str, Any],
        stream: bool,
    ) -> RequestContext:
        ctx = RequestContext()
        logger.debug(
            f"[{ctx.request_id[:8]}] Sending {len(prompt)} messages: model={model}, stream={stream}"
        )
        if self._structured_logger:
            parameters = {k: v for k, v in body.items() if k not in ("messages", "model")}
            self._structured_logger.log_request(
                model, prompt, parameters, stream=stream, request_id=ctx.request_id
            )
        return ctx

    def _log_result(self, result: ChatResult, ctx: RequestContext) -> None:
        latency_ms = ctx.elapsed_ms
        if result.success:
            logger.debug(
                f"[{ctx.request_id[:8]}] Completed: {latency_ms:.1f}ms, "
                f"tokens={result.message.tokens if result.message else 'N/A'}"
            )
        else:
            logger.warning(
                f"[{ctx.request_id[:8]}] Failed after {latency_ms:.1f}ms: "
                f"status={result.status}, error={result.error.message if result.error else None}"
            )
        if self._structured_logger:
            self._structured_logger.log_result(result, ctx.request_id, latency_ms)

    def _log_error(
        self, error: Exception, ctx: RequestContext, turn: _Turn, stream: bool
    ) -> None:
        latency_ms = ctx.elapsed_ms
        logger.error(
            f"[{ctx.request_id[:8]}] Error after {latency_ms:.1f}ms: "
            f"{type(error).__name__}: {error}"
        )
        if self._structured_logger:
            self._structured_logger.log_error(
                ctx.request_id,
                error,
                latency_ms,
                parent_message_id=turn.assistant_parent_id,
                stream=stream,
            )

    # Store access
    async def get_messages(self, id: str, max_depth: int | None = None) -> list[Message]:
        """Get the stored branch ending at ``id``, oldest first."""
        return await self._store.get_messages(id, max_depth=max_depth)

    async def add_messages(self, messages: Sequence[Message]) -> None:
        """Store messages directly, e.g. to seed a conversation."""
        await self._store.set(messages)

    async def clear_conversation(self, id: str | None) -> int:
        """Delete the branch ending at ``id``; returns the number deleted."""
        return await self._store.clear_conversation(id)

    async def store_size(self) -> int:
        """Number of stored messages."""
        return await self._store.size()

    # Lifecycle
    async def aclose(self) -> None:
        """Close the transport and store."""
        await self._transport.aclose()
        await self._store.close()

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # Properties
    @property
    def config(self) -> ChatConfig:
        """Get the current configuration."""
        return self._config

    @property
    def store(self) -> ConversationStore:
        """The conversation store."""
        return self._store

    @property
    def tokenizer(self) -> Tokenizer:
        """The tokenizer used for budget accounting."""
        return self._tokenizer
