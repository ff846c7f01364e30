"""Incremental decoder for chat-completion event streams."""

from __future__ import annotations

import codecs
import json
from typing import Any

from .errors import DecodeError

DATA_FIELD = "data:"
DATA_MARKER = "data: "
DONE_SENTINEL = "[DONE]"
EVENT_DELIMITER = "\n\n"


class EventStreamDecoder:
    """Turn arbitrarily split response bytes into content deltas.

    Events are separated by a blank line. Whatever follows the last delimiter
    of a chunk is kept in the buffer and completed by the next chunk, so a
    split can fall anywhere: inside a UTF-8 sequence, inside the ``data: ``
    marker, or inside the JSON payload.

    One decoder serves one execution session.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._done = False

    @property
    def done(self) -> bool:
        """Whether the ``[DONE]`` sentinel has been seen."""
        return self._done

    @property
    def pending(self) -> str:
        return self._buffer

    def decode(self, chunk: bytes) -> list[str]:
        """Decode one transport read and return the content deltas it completes."""
        try:
            text = self._utf8.decode(chunk)
        except UnicodeDecodeError as exc:
            raise DecodeError(f"invalid utf-8 in stream: {exc}") from exc

        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *events, self._buffer = self._buffer.split(EVENT_DELIMITER)
        return self._decode_events(events)

    def flush(self) -> list[str]:
        """Decode a final event left without a trailing blank line."""
        try:
            tail = self._utf8.decode(b"", final=True)
        except UnicodeDecodeError as exc:
            raise DecodeError(f"truncated utf-8 at end of stream: {exc}") from exc

        remainder = (self._buffer + tail).replace("\r\n", "\n")
        self._buffer = ""
        return self._decode_events([remainder])

    def _decode_events(self, events: list[str]) -> list[str]:
        deltas: list[str] = []
        for event in events:
            payload = _event_payload(event)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                self._done = True
                continue
            deltas.extend(_payload_contents(payload))
        return deltas


def _event_payload(event: str) -> str | None:
    # Lines other than data lines (comments, event/id/retry fields) carry no content.
    lines = [_strip_marker(line) for line in event.split("\n") if line.startswith(DATA_FIELD)]
    if not lines:
        return None
    return "\n".join(lines)


def _strip_marker(line: str) -> str:
    if line.startswith(DATA_MARKER):
        return line[len(DATA_MARKER) :]
    return line[len(DATA_FIELD) :]


def _payload_contents(payload: str) -> list[str]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid event payload: {payload[:80]!r}") from exc

    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        raise DecodeError("event payload has no choices")

    contents: list[str] = []
    for index, choice in enumerate(choices):
        delta = _choice_delta(choice, index)
        if delta is None:
            continue
        content = delta.get("content")
        if isinstance(content, str) and content:
            contents.append(content)
    return contents


def _choice_delta(choice: Any, index: int) -> dict[str, Any] | None:
    if not isinstance(choice, dict):
        raise DecodeError(f"choice {index} is not an object")
    delta = choice.get("delta")
    if index == 0 and not isinstance(delta, dict):
        raise DecodeError("choices[0] has no delta object")
    if not isinstance(delta, dict):
        return None
    return delta
