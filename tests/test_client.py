"""Tests for ChatClient against a mocked completion endpoint."""

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from forkchat import (
    ChatClient,
    ChatConfig,
    ConversationStore,
    MemoryStore,
    StructuredLogger,
    Tokenizer,
)
from forkchat.types import (
    Message,
    ReplayPrompt,
    StreamDelta,
    StreamFinished,
    TextPrompt,
)


class FakeProvider:
    """Records requests and answers them like a chat completion endpoint."""

    def __init__(self, reply: str = "Hello there") -> None:
        self.reply = reply
        self.requests: list[httpx.Request] = []
        self.status = 200
        self.error: dict[str, Any] | None = None
        self.raise_exc: Exception | None = None
        self.stream_chunks: list[str] | None = None

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    @property
    def last_prompt(self) -> list[dict[str, str]]:
        return self.bodies[-1]["messages"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.status != 200:
            return httpx.Response(self.status, json={"error": self.error or {}})

        body = json.loads(request.content)
        if body.get("stream"):
            chunks = self.stream_chunks or [
                self._chunk(word) for word in self.reply.split(" ")
            ] + ["data: [DONE]\n\n"]
            return httpx.Response(200, content="".join(chunks).encode())

        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "object": "chat.completion",
                "created": 1700000000,
                "model": body.get("model", "deployment"),
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": self.reply},
                        "finish_reason": "stop",
                    }
                ],
                "usage": {"prompt_tokens": 10, "completion_tokens": 2, "total_tokens": 12},
            },
        )

    def _chunk(self, word: str) -> str:
        payload = {"choices": [{"index": 0, "delta": {"content": word + " "}}]}
        return f"data: {json.dumps(payload)}\n\n"


class UnwritableStore(MemoryStore):
    """A backend that reads fine but fails every write."""

    async def set(self, key: str, message: Message) -> None:
        raise RuntimeError("store offline")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


def make_client(
    provider: FakeProvider,
    tokenizer: Tokenizer,
    config: ChatConfig | None = None,
    **kwargs: Any,
) -> ChatClient:
    return ChatClient(
        config or ChatConfig(api_key="sk-test"),
        tokenizer=tokenizer,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider)),
        **kwargs,
    )


@pytest.fixture
def client(provider: FakeProvider, word_tokenizer: Tokenizer) -> ChatClient:
    return make_client(provider, word_tokenizer)


class TestClientInit:
    """Tests for client construction."""

    def test_from_explicit_params(self, word_tokenizer: Tokenizer):
        client = ChatClient(
            api_key="sk-param",
            model="gpt-4o",
            max_tokens=1000,
            tokenizer=word_tokenizer,
        )

        assert client.config.api_key == "sk-param"
        assert client.config.model == "gpt-4o"
        assert client.config.max_tokens == 1000
        assert client.tokenizer is word_tokenizer

    def test_from_env_file(self, mock_env_file: Path, word_tokenizer: Tokenizer):
        client = ChatClient(env_file=mock_env_file, tokenizer=word_tokenizer)

        assert client.config.api_key == "sk-test-key"
        assert client.config.model == "gpt-4o-mini"
        assert client.config.max_tokens == 2048

    def test_incomplete_azure_config_fails_early(self, word_tokenizer: Tokenizer):
        from forkchat.types import ConfigurationError

        with pytest.raises(ConfigurationError):
            ChatClient(ChatConfig(vendor="azure"), tokenizer=word_tokenizer)


class TestSendMessage:
    """Tests for non-streaming sends."""

    async def test_success_stores_exchange(self, client: ChatClient, provider: FakeProvider):
        result = await client.send_message("What is Python?")

        assert result.success is True
        assert result.status == 200
        assert result.text == "Hello there"

        assistant = result.message
        assert assistant is not None
        assert assistant.role == "assistant"
        assert assistant.tokens == 12
        assert assistant.created == 1700000000

        user = await client.store.get(assistant.parent_message_id)
        assert user is not None
        assert user.text == "What is Python?"
        assert user.parent_message_id is None
        assert user.tokens == 3
        assert await client.store_size() == 2

    async def test_request_shape(self, client: ChatClient, provider: FakeProvider):
        await client.send_message("hi", temperature=0.2)

        request = provider.requests[0]
        body = provider.bodies[0]
        assert request.url == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert body["model"] == "gpt-3.5-turbo"
        assert body["temperature"] == 0.2
        assert "stream" not in body

    async def test_default_system_message(self, client: ChatClient, provider: FakeProvider):
        await client.send_message("hi")

        prompt = provider.last_prompt
        assert prompt[0]["role"] == "system"
        assert prompt[0]["content"].startswith("You are a helpful assistant.")
        assert "Current date: " in prompt[0]["content"]
        assert prompt[1:] == [{"role": "user", "content": "hi"}]

    async def test_follow_up_includes_context(self, client: ChatClient, provider: FakeProvider):
        first = await client.send_message("first question")
        assert first.message is not None

        second = await client.send_message(
            TextPrompt("second question", parent_message_id=first.message.id)
        )

        assert second.success
        assert provider.last_prompt[1:] == [
            {"role": "user", "content": "first question"},
            {"role": "assistant", "content": "Hello there"},
            {"role": "user", "content": "second question"},
        ]

        branch = await client.get_messages(second.message.id)
        assert [m.text for m in branch] == [
            "first question",
            "Hello there",
            "second question",
            "Hello there",
        ]

    async def test_ignore_server_messages(self, client: ChatClient, provider: FakeProvider):
        first = await client.send_message("first question")

        await client.send_message(
            TextPrompt("second question", parent_message_id=first.message.id),
            ignore_server_messages_in_prompt=True,
        )

        assert [m["role"] for m in provider.last_prompt] == ["system", "user", "user"]

    async def test_budget_limits_context(self, client: ChatClient, provider: FakeProvider):
        first = await client.send_message("one two three four five")

        # The user turn uses 2 of 4 tokens; the stored assistant reply
        # counts 12 (its cached total) and does not fit.
        await client.send_message(
            TextPrompt("six seven", parent_message_id=first.message.id),
            max_tokens=4,
        )

        assert provider.last_prompt[1:] == [{"role": "user", "content": "six seven"}]

    async def test_system_prompt_resets_branch(self, client: ChatClient, provider: FakeProvider):
        first = await client.send_message("old question")
        old_user_id = first.message.parent_message_id

        result = await client.send_message(
            TextPrompt(
                "new question",
                system_prompt="You are terse.",
                parent_message_id=first.message.id,
            )
        )

        assert await client.store.get(first.message.id) is None
        assert await client.store.get(old_user_id) is None
        assert provider.last_prompt == [
            {"role": "system", "content": "You are terse."},
            {"role": "user", "content": "new question"},
        ]

        branch = await client.get_messages(result.message.id)
        assert [m.role for m in branch] == ["system", "user", "assistant"]
        assert branch[0].text == "You are terse."
        assert branch[1].parent_message_id == branch[0].id
        assert await client.store_size() == 3

    async def test_regenerate_keeps_sibling(self, client: ChatClient, provider: FakeProvider):
        first = await client.send_message("question")
        user_id = first.message.parent_message_id

        provider.reply = "Second answer"
        await client.send_message(TextPrompt("again", parent_message_id=user_id))

        # Branching from the user turn leaves the earlier answer in place
        assert await client.store.get(first.message.id) is not None
        assert await client.store_size() == 4

    async def test_replay_is_not_stored(self, client: ChatClient, provider: FakeProvider):
        messages = [
            Message(text="Be brief.", role="system", id="s1"),
            Message(text="Hi", role="user", id="u1", parent_message_id="s1"),
        ]

        result = await client.send_message(messages)

        assert result.success
        assert provider.last_prompt == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hi"},
        ]
        assert result.message.parent_message_id == "u1"
        assert await client.store_size() == 0

        await client.send_message(ReplayPrompt(messages))
        assert await client.store_size() == 0

    async def test_replay_with_unknown_role_is_rejected(
        self, client: ChatClient, provider: FakeProvider
    ):
        messages = [Message(text="call it", role="tool", id="t1")]  # type: ignore[arg-type]

        with pytest.raises(ValueError, match="invalid role 'tool'"):
            await client.send_message(messages)

        assert provider.requests == []

    async def test_usage_is_reported(self, client: ChatClient):
        result = await client.send_message("hi")

        assert result.usage is not None
        assert result.usage.prompt_tokens == 10
        assert result.usage.completion_tokens == 2
        assert result.usage.total_tokens == 12

    async def test_provider_error(self, client: ChatClient, provider: FakeProvider):
        provider.status = 429
        provider.error = {"message": "Rate limit reached", "type": "rate_limit_error"}

        result = await client.send_message("hi")

        assert result.success is False
        assert result.status == 429
        assert result.error.message == "Rate limit reached"
        assert result.error.type == "rate_limit_error"
        assert result.error.timeout is False
        assert await client.store_size() == 0

    async def test_timeout(self, client: ChatClient, provider: FakeProvider):
        provider.raise_exc = httpx.ReadTimeout("timed out")

        result = await client.send_message("hi")

        assert result.success is False
        assert result.status == 500
        assert result.error.timeout is True
        assert result.error.type == "timeout"
        assert result.error.message == "request timeout"
        assert await client.store_size() == 0

    async def test_unexpected_response_shape(self, word_tokenizer: Tokenizer):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": "not a list"})

        client = ChatClient(
            ChatConfig(api_key="sk-test"),
            tokenizer=word_tokenizer,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        result = await client.send_message("hi")

        assert result.success is False
        assert result.error.type == "invalid_response"

    @pytest.mark.parametrize("bad", ["", [], 42])
    async def test_invalid_input(self, client: ChatClient, provider: FakeProvider, bad: Any):
        with pytest.raises(ValueError):
            await client.send_message(bad)

        assert provider.requests == []


class TestAzure:
    """Tests for the azure vendor."""

    async def test_headers_and_url(self, provider: FakeProvider, word_tokenizer: Tokenizer):
        config = ChatConfig(
            api_key="az-key",
            vendor="azure",
            azure_endpoint="example.openai.azure.com",
            azure_deployment="chat",
            azure_api_version="2024-02-01",
        )
        client = make_client(provider, word_tokenizer, config)

        await client.send_message("hi")

        request = provider.requests[0]
        assert str(request.url) == (
            "https://example.openai.azure.com/openai/deployments/chat"
            "/chat/completions?api-version=2024-02-01"
        )
        assert request.headers["api-key"] == "az-key"
        assert "Authorization" not in request.headers
        assert "model" not in provider.bodies[0]


class TestStreaming:
    """Tests for streamed sends."""

    async def test_on_progress_receives_deltas(self, client: ChatClient, provider: FakeProvider):
        received: list[str] = []

        result = await client.send_message("hi", on_progress=lambda text, raw: received.append(text))

        assert result.success is True
        assert result.text == "Hello there "
        assert "".join(received) == "Hello there "
        assert provider.bodies[0]["stream"] is True

    async def test_async_on_progress(self, client: ChatClient):
        received: list[str] = []

        async def on_progress(text: str, raw: str) -> None:
            received.append(raw)

        await client.send_message("hi", streaming=True, on_progress=on_progress)

        assert received
        assert all(chunk.startswith("data: ") for chunk in received)

    async def test_stream_message_events(self, client: ChatClient, provider: FakeProvider):
        events = [event async for event in client.stream_message("count to two")]

        deltas = [e for e in events if isinstance(e, StreamDelta)]
        assert "".join(d.text for d in deltas) == "Hello there "
        assert isinstance(events[-1], StreamFinished)
        assert sum(isinstance(e, StreamFinished) for e in events) == 1

        message = events[-1].result.message
        prompt_text = "".join(m["content"] for m in provider.last_prompt)
        assert message.len == len("Hello there ") + len(prompt_text)
        assert message.created is not None

        # Stored before StreamFinished was yielded
        assert await client.store.get(message.id) is message
        assert await client.store_size() == 2

    async def test_stream_tokens_cover_reply_and_prompt(
        self, client: ChatClient, provider: FakeProvider, word_tokenizer: Tokenizer
    ):
        result = await client.send_message("hi", streaming=True)

        prompt_text = "".join(m["content"] for m in provider.last_prompt)
        assert result.message.tokens == word_tokenizer.get_token_count(
            "Hello there " + prompt_text
        )
        # Streamed chunks carry no usage block
        assert result.usage is None

    async def test_malformed_record_is_collected(
        self, client: ChatClient, provider: FakeProvider
    ):
        provider.stream_chunks = [
            'data: {"choices": [{"delta": {"content": "a"}}]}\n\n',
            '{"choices": [{"delta": {"content": "x"}}]}\n\n',
            'data: {"choices": [{"delta": {"content": "b"}}]}\n\n',
        ]

        result = await client.send_message("hi", streaming=True)

        assert result.success is True
        assert result.text == "ab"
        assert result.message.error_messages == ['{"choices": [{"delta": {"content": "x"}}]}']

    async def test_stream_failure(self, client: ChatClient, provider: FakeProvider):
        provider.status = 401
        provider.error = {"message": "Invalid key", "type": "invalid_request_error"}

        events = [event async for event in client.stream_message("hi")]

        assert len(events) == 1
        result = events[0].result
        assert result.success is False
        assert result.status == 401
        assert result.error.type == "invalid_request_error"
        assert await client.store_size() == 0


class TestStructuredLogging:
    """Tests for request/response JSONL logging through the client."""

    async def test_writes_request_and_response(
        self, provider: FakeProvider, word_tokenizer: Tokenizer, tmp_path: Path
    ):
        log_file = tmp_path / "chat.jsonl"
        structured = StructuredLogger(log_file=log_file, redact_patterns=["secret"])
        client = make_client(provider, word_tokenizer, structured_logger=structured)

        await client.send_message("my secret question")
        structured.close()

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [e["type"] for e in entries] == ["request", "response"]
        assert entries[0]["request_id"] == entries[1]["request_id"]
        assert entries[0]["parameters"] == {"temperature": 1.0}
        assert "secret" not in log_file.read_text()
        assert entries[1]["success"] is True
        assert entries[1]["tokens"] == 12

    async def test_store_failure_is_logged_and_raised(
        self, provider: FakeProvider, word_tokenizer: Tokenizer, tmp_path: Path
    ):
        log_file = tmp_path / "chat.jsonl"
        structured = StructuredLogger(log_file=log_file)
        store = ConversationStore(backend=UnwritableStore())
        client = make_client(provider, word_tokenizer, store=store, structured_logger=structured)

        with pytest.raises(RuntimeError, match="store offline"):
            await client.send_message("hi")
        structured.close()

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [e["type"] for e in entries] == ["request", "error"]
        assert entries[1]["request_id"] == entries[0]["request_id"]
        assert entries[1]["error_type"] == "RuntimeError"
        assert entries[1]["error"] == "store offline"
        assert entries[1]["stream"] is False

    async def test_store_failure_while_streaming(
        self, provider: FakeProvider, word_tokenizer: Tokenizer, tmp_path: Path
    ):
        log_file = tmp_path / "chat.jsonl"
        structured = StructuredLogger(log_file=log_file)
        store = ConversationStore(backend=UnwritableStore())
        client = make_client(provider, word_tokenizer, store=store, structured_logger=structured)
        events = []

        with pytest.raises(RuntimeError, match="store offline"):
            async for event in client.stream_message("hi"):
                events.append(event)
        structured.close()

        # Deltas arrive, but no StreamFinished follows a failed write
        assert events
        assert not any(isinstance(e, StreamFinished) for e in events)

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [e["type"] for e in entries] == ["request", "error"]
        assert entries[1]["stream"] is True


class TestLifecycle:
    """Tests for store helpers and closing."""

    async def test_add_and_clear(self, client: ChatClient):
        await client.add_messages(
            [
                Message(text="a", role="user", id="a"),
                Message(text="b", role="assistant", id="b", parent_message_id="a"),
            ]
        )

        assert await client.store_size() == 2
        assert await client.clear_conversation("b") == 2
        assert await client.store_size() == 0

    async def test_context_manager(self, provider: FakeProvider, word_tokenizer: Tokenizer):
        async with make_client(provider, word_tokenizer) as client:
            result = await client.send_message("hi")

        assert result.success
