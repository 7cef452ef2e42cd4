"""HTTP transport for the chat completion endpoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx

from ..types import (
    ChatResult,
    ErrorInfo,
    TransportError,
    TransportFailure,
    TransportTimeout,
)
from .payloads import parse_error_body

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """A decoded JSON response."""

    status: int
    data: Any


@dataclass
class StreamResponse:
    """A successful streaming response whose body is still arriving."""

    status: int
    chunks: AsyncIterator[bytes]


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def _failure_from_body(status: int, body: bytes) -> TransportFailure:
    detail = parse_error_body(body) if body else None
    if detail is not None and (detail.message or detail.type):
        return TransportFailure(
            detail.message or f"HTTP {status}",
            status_code=status,
            error_type=detail.type,
            response=detail.model_dump(exclude_none=True),
        )
    return TransportFailure(f"HTTP {status}", status_code=status, response=body)


class HttpTransport:
    """
    Sends completion requests over httpx.

    Timeouts raise TransportTimeout; connection errors and non-2xx
    responses raise TransportFailure with the provider's message and type
    when the body carries them.

    Example:
        transport = HttpTransport(timeout=60.0)
        response = await transport.post_json(url, headers, body)

        async with transport.stream(url, headers, body) as stream:
            async for chunk in stream.chunks:
                ...
    """

    def __init__(
        self,
        timeout: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the transport.

        Args:
            timeout: Request timeout in seconds (ignored when client is given)
            client: Pre-configured httpx client; owned by the caller
        """
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    async def post_json(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
    ) -> TransportResponse:
        """
        POST a JSON body and decode the JSON response.

        Raises:
            TransportTimeout: If the request timed out
            TransportFailure: On connection errors, non-2xx status or a
                              non-JSON body
        """
        try:
            response = await self._client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise TransportTimeout(f"Request timed out: {e}", response=e) from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"Connection error: {e}", response=e) from e

        if not _is_success(response.status_code):
            raise _failure_from_body(response.status_code, response.content)

        try:
            data = response.json()
        except ValueError as e:
            raise TransportFailure(
                "Response body is not JSON",
                status_code=response.status_code,
                response=response.text,
            ) from e
        return TransportResponse(status=response.status_code, data=data)

    @asynccontextmanager
    async def stream(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
    ) -> AsyncIterator[StreamResponse]:
        """
        POST a JSON body and expose the response body as it arrives.

        Errors raised while the caller iterates the chunks are mapped the
        same way as errors raised while connecting.

        Raises:
            TransportTimeout: If the request or a read timed out
            TransportFailure: On connection errors or non-2xx status
        """
        try:
            async with self._client.stream("POST", url, headers=headers, json=body) as response:
                if not _is_success(response.status_code):
                    raise _failure_from_body(response.status_code, await response.aread())
                yield StreamResponse(status=response.status_code, chunks=response.aiter_bytes())
        except httpx.TimeoutException as e:
            raise TransportTimeout(f"Request timed out: {e}", response=e) from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"Connection error: {e}", response=e) from e

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()


def error_result(error: TransportError) -> ChatResult:
    """
    Convert a transport error into a failed ChatResult.

    Timeouts and failures without a status are reported with status 500.
    """
    if isinstance(error, TransportTimeout):
        return ChatResult(
            success=False,
            status=500,
            error=ErrorInfo(message="request timeout", type="timeout", timeout=True),
            raw=error.response,
        )

    details = error.response if isinstance(error.response, dict) else {}
    return ChatResult(
        success=False,
        status=error.status_code or 500,
        error=ErrorInfo(
            message=str(error) or "unknown error",
            type=error.error_type or "unknown_error",
            details=details,
        ),
        raw=error.response,
    )
