"""Incremental assembly of streamed chat completion responses."""

import codecs
import logging
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from typing import Protocol

from pydantic import ValidationError

from .core.messages import concat_messages
from .core.payloads import ChatCompletionChunk
from .types import (
    ChatResult,
    MalformedStreamRecord,
    Message,
    MessageDict,
    StreamDelta,
    StreamEvent,
    StreamFinished,
)

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKERS = frozenset({"data: [DONE]", "data:[DONE]"})

_OPENERS = "{["
_CLOSERS = "}]"


class TextCounter(Protocol):
    def get_token_count(self, value: str) -> int: ...


class StreamAssembler:
    """
    Turns a chunked ``data: <json>`` byte stream into text deltas.

    Chunks may end anywhere: mid-line, mid-record or mid-character. The
    assembler keeps the unfinished tail in a buffer across as many chunks
    as it takes, and decides that a record is complete by tracking
    brace/bracket nesting (ignoring braces inside JSON strings) rather
    than by matching a fixed suffix.

    A complete record without the ``data:`` prefix is kept as a
    diagnostic and skipped, and so is a record still open when its line
    ends. A prefixed record that is not valid JSON contributes no text.
    None of these stops the stream.

    Example:
        assembler = StreamAssembler(message, prompt, tokenizer)
        async for event in assembler.assemble(response.aiter_bytes()):
            if isinstance(event, StreamDelta):
                print(event.text, end="")
            else:
                result = event.result
    """

    def __init__(
        self,
        message: Message,
        prompt_messages: Sequence[MessageDict],
        tokenizer: TextCounter,
    ):
        """
        Initialize the assembler.

        Args:
            message: The in-flight assistant message; its text is extended
                     in place as deltas arrive
            prompt_messages: The prompt that was sent, counted into the
                             final token total
            tokenizer: Token counter for the final total
        """
        self._message = message
        self._prompt_messages = list(prompt_messages)
        self._tokenizer = tokenizer
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self._buffer: list[str] = []
        self._depth = 0
        self._in_string = False
        self._escape = False
        self._opened = False

        self._diagnostics: list[MalformedStreamRecord] = []
        self._finished = False

    @property
    def message(self) -> Message:
        """The aggregate assistant message."""
        return self._message

    @property
    def diagnostics(self) -> list[MalformedStreamRecord]:
        """Records that could not be decoded so far."""
        return list(self._diagnostics)

    def feed(self, chunk: bytes | str) -> StreamDelta:
        """
        Consume one chunk of the stream.

        Args:
            chunk: Raw bytes (decoded incrementally) or already decoded text

        Returns:
            A delta with the text decoded from this chunk (possibly empty)
            and the chunk's raw text
        """
        if self._finished:
            raise RuntimeError("StreamAssembler already finished")

        raw = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        text = self._consume_text(raw)
        self._message.text += text
        return StreamDelta(text=text, raw=raw)

    def finish(self) -> Message:
        """
        Finalize the aggregate message after the stream ended.

        Sets ``tokens`` to the count of the response text plus the prompt
        text, ``len`` to their combined length, and ``error_messages`` to
        the raw diagnostic records.
        """
        if self._finished:
            return self._message

        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._message.text += self._consume_text(tail)

        leftover = "".join(self._buffer).strip()
        if leftover and leftover not in DONE_MARKERS:
            self._record_diagnostic(leftover, "stream ended inside a record")
        self._reset_record()
        self._finished = True

        prompt_text = concat_messages(self._prompt_messages)
        self._message.tokens = self._tokenizer.get_token_count(self._message.text + prompt_text)
        self._message.len = len(self._message.text) + len(prompt_text)
        self._message.error_messages = [d.record for d in self._diagnostics]
        return self._message

    async def assemble(
        self,
        chunks: AsyncIterable[bytes],
        status: int = 200,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield a delta per chunk, then a single StreamFinished.

        Args:
            chunks: The response body as it arrives
            status: HTTP status reported in the final result

        Yields:
            StreamDelta events in stream order, then StreamFinished
        """
        async for chunk in chunks:
            yield self.feed(chunk)

        message = self.finish()
        yield StreamFinished(ChatResult(success=True, status=status, message=message))

    def _consume_text(self, text: str) -> str:
        lines = text.split("\n")
        decoded: list[str] = []

        for index, fragment in enumerate(lines):
            decoded.append(self._scan(fragment))
            # Every fragment but the last ended at a newline
            if index < len(lines) - 1:
                self._end_line()

        return "".join(decoded)

    def _scan(self, fragment: str) -> str:
        decoded: list[str] = []
        start = 0

        for pos, char in enumerate(fragment):
            if self._depth > 0 and self._in_string:
                if self._escape:
                    self._escape = False
                elif char == "\\":
                    self._escape = True
                elif char == '"':
                    self._in_string = False
                continue

            if char == '"' and self._depth > 0:
                self._in_string = True
            elif char in _OPENERS:
                self._depth += 1
                self._opened = True
            elif char in _CLOSERS and self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    self._buffer.append(fragment[start : pos + 1])
                    start = pos + 1
                    decoded.append(self._complete_record("".join(self._buffer)))
                    self._reset_record()

        if start < len(fragment):
            self._buffer.append(fragment[start:])
        return "".join(decoded)

    def _complete_record(self, record: str) -> str:
        stripped = record.strip()
        if not stripped.startswith(DATA_PREFIX):
            self._record_diagnostic(stripped, "missing data: prefix")
            return ""

        payload = stripped[len(DATA_PREFIX) :].strip()
        try:
            chunk = ChatCompletionChunk.model_validate_json(payload)
        except ValidationError as e:
            logger.debug(f"Skipping undecodable stream record: {e.error_count()} errors")
            return ""
        return chunk.content

    def _end_line(self) -> None:
        line = "".join(self._buffer).strip()
        opened = self._opened
        self._reset_record()
        if opened:
            # A data line never spans a newline, so an open record is lost
            self._record_diagnostic(line, "unterminated record")
            return
        # Blank separators, the end marker and SSE comments carry no content
        if not line or line in DONE_MARKERS or line.startswith(":"):
            return
        self._record_diagnostic(line, "line without a JSON payload")

    def _record_diagnostic(self, record: str, reason: str) -> None:
        diagnostic = MalformedStreamRecord(record, reason)
        self._diagnostics.append(diagnostic)
        logger.warning(f"Malformed stream record: {diagnostic}")

    def _reset_record(self) -> None:
        self._buffer = []
        self._depth = 0
        self._in_string = False
        self._escape = False
        self._opened = False
