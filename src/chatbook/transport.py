"""Completion service transport."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

import httpx
from loguru import logger

from .config import DEFAULT_API_BASE
from .document import Message
from .errors import TransportError

CONNECTIVITY_ERROR = "Error communicating with the completion service"
USER_AGENT = "chatbook/0.1"


class CompletionStream(Protocol):
    """Readable body of one streaming completion response."""

    async def read(self) -> bytes:
        """Return the next chunk, or empty bytes at end of input."""
        ...

    async def aclose(self) -> None: ...


class CompletionTransport(Protocol):
    """Opens streaming completion requests."""

    async def open(self, payload: dict[str, Any], credentials: str) -> CompletionStream | None:
        """Send the request and return its body stream, or ``None`` when there is no body."""
        ...


def build_payload(messages: Sequence[Message], model: str) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [message.as_payload() for message in messages],
        "stream": True,
    }


def connectivity_message(detail: object) -> str:
    return f"{CONNECTIVITY_ERROR}: {detail!s}"


def error_message_from_body(body: bytes, status_code: int) -> str:
    """Extract the human-readable message from a service error envelope."""
    try:
        data = json.loads(body.decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        data = None

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and isinstance(message := error.get("message"), str) and message:
        return message
    if isinstance(error, str) and error:
        return error
    return connectivity_message(f"HTTP {status_code}")


class HttpxCompletionStream:
    """Chunk reader over one streamed httpx response."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._chunks: AsyncIterator[bytes] = response.aiter_bytes()

    async def read(self) -> bytes:
        try:
            return await anext(self._chunks, b"")
        except (httpx.HTTPError, httpx.StreamClosed) as exc:
            raise TransportError(connectivity_message(exc)) from exc

    async def aclose(self) -> None:
        await self._response.aclose()


class HttpxTransport:
    """POST chat completions to an OpenAI-compatible endpoint and stream the body."""

    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        *,
        timeout_seconds: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = f"{api_base.rstrip('/')}/chat/completions"
        self._owns_client = client is None
        # Reads stay unbounded; cancellation closes the response instead.
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds, read=None))

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def open(self, payload: dict[str, Any], credentials: str) -> CompletionStream | None:
        request = self._client.build_request(
            "POST",
            self.endpoint,
            json=payload,
            headers={
                "Authorization": f"Bearer {credentials}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
                "User-Agent": USER_AGENT,
            },
        )
        logger.info("transport.open endpoint={} model={}", self.endpoint, payload.get("model"))
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(connectivity_message(exc)) from exc

        if response.is_error:
            try:
                body = await response.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await response.aclose()
            logger.warning("transport.http_error status={}", response.status_code)
            raise TransportError(
                error_message_from_body(body, response.status_code),
                status_code=response.status_code,
            )

        if response.status_code == httpx.codes.NO_CONTENT:
            await response.aclose()
            return None
        return HttpxCompletionStream(response)
