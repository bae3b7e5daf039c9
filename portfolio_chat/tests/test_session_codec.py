import json
from datetime import datetime, timezone

import pytest

from portfolio_chat.domain.models import Conversation, Message
from portfolio_chat.infrastructure.storage.session_codec import (
    decode_session,
    encode_session,
    format_timestamp,
    parse_timestamp,
)


TS = datetime(2025, 3, 4, 5, 6, 7, 123000, tzinfo=timezone.utc)


def _conversation():
    return Conversation(
        conversation_id="conv-1",
        messages=(
            Message(id="welcome", role="system", content="Hi!", timestamp=TS, status="complete"),
            Message(id="u1", role="user", content="héllo 你好", timestamp=TS, status="complete"),
            Message(id="a1", role="assistant", content="", timestamp=TS, status="error"),
        ),
    )


def test_encode_record_shape():
    record = json.loads(encode_session(_conversation(), now=TS))
    assert record["conversationId"] == "conv-1"
    assert record["lastUpdated"] == "2025-03-04T05:06:07.123Z"
    assert record["messages"][1] == {
        "id": "u1",
        "role": "user",
        "content": "héllo 你好",
        "timestamp": "2025-03-04T05:06:07.123Z",
        "status": "complete",
    }


def test_decode_restores_conversation():
    conversation = _conversation()
    assert decode_session(encode_session(conversation)) == conversation


@pytest.mark.parametrize("role", ["user", "assistant", "system"])
@pytest.mark.parametrize("status", ["sending", "streaming", "complete", "error"])
@pytest.mark.parametrize("millis", [0, 1, 500, 999])
def test_every_role_and_status_survives_encoding(role, status, millis):
    ts = datetime(2024, 12, 31, 23, 59, 59, millis * 1000, tzinfo=timezone.utc)
    conversation = Conversation(
        conversation_id="conv-2",
        messages=(
            Message(id="m1", role=role, content="line one\nline two \"quoted\"", timestamp=ts, status=status),
            Message(id="m2", role="assistant", content="", timestamp=TS, status="complete"),
        ),
    )
    assert decode_session(encode_session(conversation, now=ts)) == conversation


def test_empty_conversation_decodes():
    restored = decode_session(encode_session(Conversation(conversation_id="c")))
    assert restored == Conversation(conversation_id="c", messages=())


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "{not json",
        "[]",
        '"just a string"',
        json.dumps({"messages": [], "lastUpdated": "2025-01-01T00:00:00.000Z"}),
        json.dumps({"conversationId": "", "messages": [], "lastUpdated": "2025-01-01T00:00:00.000Z"}),
        json.dumps({"conversationId": 42, "messages": [], "lastUpdated": "2025-01-01T00:00:00.000Z"}),
        json.dumps({"conversationId": "c", "messages": "nope", "lastUpdated": "2025-01-01T00:00:00.000Z"}),
        json.dumps({"conversationId": "c", "messages": [], "lastUpdated": "garbage"}),
        json.dumps({"conversationId": "c", "messages": [], "lastUpdated": "0001-01-01T00:30:00.000+01:00"}),
        json.dumps({"conversationId": "c", "messages": []}),
    ],
)
def test_decode_rejects_malformed_sessions(raw):
    assert decode_session(raw) is None


@pytest.mark.parametrize(
    "field, value",
    [
        ("role", "tool"),
        ("status", "pending"),
        ("content", None),
        ("content", 123),
        ("timestamp", "yesterday"),
        ("timestamp", "0001-01-01T00:00:00.000+01:00"),
        ("timestamp", "9999-12-31T23:59:59.000-01:00"),
        ("id", ""),
    ],
)
def test_decode_rejects_bad_messages(field, value):
    record = json.loads(encode_session(_conversation()))
    record["messages"][1][field] = value
    assert decode_session(json.dumps(record)) is None


def test_decode_rejects_message_missing_field():
    record = json.loads(encode_session(_conversation()))
    del record["messages"][0]["timestamp"]
    assert decode_session(json.dumps(record)) is None


def test_timestamp_helpers():
    assert format_timestamp(TS) == "2025-03-04T05:06:07.123Z"
    naive = datetime(2025, 1, 1, 0, 0)
    assert format_timestamp(naive) == "2025-01-01T00:00:00.000Z"
    assert parse_timestamp("2025-03-04T05:06:07.123Z") == TS
    assert parse_timestamp("2025-03-04T07:06:07.123+02:00") == TS
