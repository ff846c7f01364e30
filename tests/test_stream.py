import json

import pytest

from chatbook.errors import DecodeError
from chatbook.stream import EventStreamDecoder


def _event(content: str | None = None, *, role: str | None = None) -> bytes:
    delta: dict[str, str] = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    payload = {"id": "chatcmpl-1", "object": "chat.completion.chunk", "choices": [{"index": 0, "delta": delta}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode()


DONE = b"data: [DONE]\n\n"


def _decode_all(decoder: EventStreamDecoder, chunks: list[bytes]) -> list[str]:
    deltas: list[str] = []
    for chunk in chunks:
        deltas.extend(decoder.decode(chunk))
    deltas.extend(decoder.flush())
    return deltas


def test_decode_single_chunk_with_several_events() -> None:
    raw = _event(role="assistant") + _event("Hel") + _event("lo") + DONE

    decoder = EventStreamDecoder()

    assert decoder.decode(raw) == ["Hel", "lo"]
    assert decoder.done


def test_decode_split_at_every_offset_matches_single_chunk() -> None:
    raw = _event(role="assistant") + _event("Héllo") + _event(" wörld ✓") + _event("") + _event("!") + DONE
    expected = _decode_all(EventStreamDecoder(), [raw])
    assert expected == ["Héllo", " wörld ✓", "!"]

    for offset in range(1, len(raw)):
        assert _decode_all(EventStreamDecoder(), [raw[:offset], raw[offset:]]) == expected, offset


def test_decode_byte_by_byte_matches_single_chunk() -> None:
    raw = _event("first") + _event("😀 second") + DONE

    chunks = [raw[index : index + 1] for index in range(len(raw))]

    assert _decode_all(EventStreamDecoder(), chunks) == ["first", "😀 second"]


def test_decode_buffers_partial_event_until_delimiter() -> None:
    decoder = EventStreamDecoder()
    raw = _event("partial")

    assert decoder.decode(raw[:-1]) == []
    assert decoder.pending
    assert decoder.decode(raw[-1:]) == ["partial"]
    assert decoder.pending == ""


def test_done_sentinel_is_filtered_without_fault() -> None:
    decoder = EventStreamDecoder()

    assert decoder.decode(DONE) == []
    assert decoder.done
    assert decoder.flush() == []


def test_delta_without_content_is_skipped() -> None:
    decoder = EventStreamDecoder()

    assert decoder.decode(_event(role="assistant")) == []
    assert decoder.decode(b'data: {"choices": [{"delta": {"content": null}}]}\n\n') == []
    assert decoder.decode(b'data: {"choices": [{"delta": {}, "finish_reason": "stop"}]}\n\n') == []


def test_every_choice_contributes_content_in_order() -> None:
    raw = b'data: {"choices": [{"delta": {"content": "a"}}, {"delta": {"content": "b"}}, {"index": 2}]}\n\n'

    assert EventStreamDecoder().decode(raw) == ["a", "b"]


def test_non_data_lines_are_ignored() -> None:
    raw = b": keep-alive\n\nevent: message\nid: 7\n" + _event("x")

    assert EventStreamDecoder().decode(raw) == ["x"]


def test_crlf_delimiters_are_accepted_across_splits() -> None:
    raw = _event("a").replace(b"\n", b"\r\n") + _event("b").replace(b"\n", b"\r\n")
    expected = ["a", "b"]

    for offset in range(1, len(raw)):
        assert _decode_all(EventStreamDecoder(), [raw[:offset], raw[offset:]]) == expected


def test_data_marker_without_space() -> None:
    assert EventStreamDecoder().decode(b'data:{"choices": [{"delta": {"content": "tight"}}]}\n\n') == ["tight"]


def test_flush_decodes_event_without_trailing_blank_line() -> None:
    decoder = EventStreamDecoder()
    raw = _event("tail").rstrip(b"\n")

    assert decoder.decode(raw) == []
    assert decoder.flush() == ["tail"]


def test_flush_ignores_whitespace_remainder() -> None:
    decoder = EventStreamDecoder()

    assert decoder.decode(_event("x") + b"\n") == ["x"]
    assert decoder.flush() == []


@pytest.mark.parametrize(
    "raw",
    [
        b"data: not json\n\n",
        b'data: {"choices": [{"delta": {"content": "x"\n\n',
        b'data: {"object": "chat.completion.chunk"}\n\n',
        b'data: {"choices": []}\n\n',
        b'data: {"choices": [{"message": {"content": "x"}}]}\n\n',
        b'data: {"choices": ["x"]}\n\n',
        b"data: [1, 2]\n\n",
    ],
)
def test_malformed_payload_raises_decode_error(raw: bytes) -> None:
    with pytest.raises(DecodeError):
        EventStreamDecoder().decode(raw)


def test_malformed_payload_after_good_event_raises() -> None:
    decoder = EventStreamDecoder()

    assert decoder.decode(_event("ok")) == ["ok"]
    with pytest.raises(DecodeError):
        decoder.decode(b"data: {broken\n\n")


def test_invalid_utf8_raises_decode_error() -> None:
    with pytest.raises(DecodeError):
        EventStreamDecoder().decode(b"data: \xff\xfe\n\n")


def test_truncated_utf8_at_end_of_stream_raises_on_flush() -> None:
    decoder = EventStreamDecoder()
    decoder.decode("data: é".encode()[:-1])

    with pytest.raises(DecodeError):
        decoder.flush()


def test_decoders_do_not_share_state() -> None:
    first = EventStreamDecoder()
    second = EventStreamDecoder()
    raw = _event("shared")

    first.decode(raw[:10])

    assert second.decode(raw) == ["shared"]
    assert first.decode(raw[10:]) == ["shared"]
