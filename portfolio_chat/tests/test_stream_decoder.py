import json

from portfolio_chat.domain.models import ChunkEvent, DoneEvent, ErrorEvent
from portfolio_chat.providers.stream_decoder import (
    decode_events,
    encode_event,
    iter_event_data,
    parse_chat_payload,
)


def _delta(text):
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False) + "\n\n"


def _split(data: bytes, size: int):
    return [data[i:i + size] for i in range(0, len(data), size)]


def test_decode_basic_stream():
    body = (_delta("Hel") + _delta("lo") + "data: [DONE]\n\n").encode()
    events = list(decode_events([body]))
    assert events == [ChunkEvent("Hel"), ChunkEvent("lo"), DoneEvent()]


def test_decode_is_independent_of_chunk_boundaries():
    body = (_delta("Hello! ") + _delta("I can help you.") + "data: [DONE]\n\n").encode()
    expected = list(decode_events([body]))
    for size in (1, 2, 3, 7, 13, len(body)):
        assert list(decode_events(_split(body, size))) == expected


def test_decode_multibyte_characters_split_across_reads():
    body = (_delta("héllo 你好 👋") + "data: [DONE]\n\n").encode("utf-8")
    for size in (1, 2, 3, 5):
        events = list(decode_events(_split(body, size)))
        assert events[0] == ChunkEvent("héllo 你好 👋")
        assert events[-1] == DoneEvent()


def test_decode_skips_malformed_and_empty_records():
    body = (
        "data: {not json\n\n"
        + ": keep-alive comment\n\n"
        + "event: ping\n"
        + "data: " + json.dumps({"choices": [{"delta": {"role": "assistant"}}]}) + "\n\n"
        + "data: " + json.dumps({"choices": []}) + "\n\n"
        + _delta("")
        + _delta("ok")
        + "data: [DONE]\n\n"
    )
    assert list(decode_events([body])) == [ChunkEvent("ok"), DoneEvent()]


def test_decode_stops_after_done_sentinel():
    body = _delta("a") + "data: [DONE]\n\n" + _delta("b")
    assert list(decode_events([body])) == [ChunkEvent("a"), DoneEvent()]


def test_decode_upstream_error_is_terminal():
    body = (
        _delta("partial")
        + "data: " + json.dumps({"error": {"message": "overloaded"}}) + "\n\n"
        + _delta("never")
    )
    events = list(decode_events([body]))
    assert events == [ChunkEvent("partial"), ErrorEvent(message="overloaded")]


def test_decode_without_sentinel_ends_with_last_chunk():
    assert list(decode_events([_delta("x") + _delta("y")])) == [ChunkEvent("x"), ChunkEvent("y")]


def test_final_record_without_newline_is_flushed():
    assert list(iter_event_data([b"data: one\n", b"data: two"])) == ["one", "two"]


def test_crlf_line_endings():
    body = _delta("hi").replace("\n", "\r\n") + "data: [DONE]\r\n\r\n"
    assert list(decode_events([body])) == [ChunkEvent("hi"), DoneEvent()]


def test_chat_payload_events():
    body = (
        encode_event(ChunkEvent("Hello"))
        + encode_event(ErrorEvent(message="Too many requests.", kind="rate_limit", retryable=True))
    )
    events = list(decode_events([body.encode()], parse_chat_payload))
    assert events == [
        ChunkEvent("Hello"),
        ErrorEvent(message="Too many requests.", kind="rate_limit", retryable=True),
    ]


def test_chat_payload_done_and_unknown_types():
    body = 'data: {"type": "progress"}\n\n' + encode_event(DoneEvent()) + encode_event(ChunkEvent("late"))
    assert list(decode_events([body], parse_chat_payload)) == [DoneEvent()]


def test_chat_error_without_message_gets_default():
    event = parse_chat_payload({"type": "error"})
    assert event == ErrorEvent(message="Unknown error occurred")


def test_encode_event_format():
    assert encode_event(ChunkEvent("你好")) == 'data: {"type": "chunk", "content": "你好"}\n\n'
    assert encode_event(DoneEvent()) == 'data: {"type": "done"}\n\n'
    assert encode_event(ErrorEvent(message="boom")) == 'data: {"type": "error", "message": "boom"}\n\n'
