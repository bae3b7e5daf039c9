"""会话记录的编解码。

纯同步函数，在 Conversation 与按标签页持久化的 JSON 记录之间转换：

    {"conversationId": "...",
     "messages": [{"id", "role", "content", "timestamp", "status"}, ...],
     "lastUpdated": "2025-01-01T12:00:00.000Z"}

encode_session 总是成功；decode_session 对任何结构不符（缺字段、类型错误、
时间戳无法解析）都返回 None，而不是抛异常，调用方可以当作"没有历史会话"继续。
"""

import json
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator
from pydantic import ValidationError as SchemaError

from portfolio_chat.domain.models import Conversation, Message, utc_now
from portfolio_chat.infrastructure.logging.logger import logger


def format_timestamp(value: datetime) -> str:
    """ISO-8601，毫秒精度，UTC 以 "Z" 结尾。"""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """解析 ISO-8601 时间戳；无法表示为 UTC 时间时同样抛出 ValueError。"""

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        # 0001-01-01 / 9999-12-31 附近带偏移的时间换算到 UTC 会越界
        raise ValueError(f"Timestamp out of range: {value}") from exc


class StoredMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: StrictStr = Field(min_length=1)
    role: Literal["user", "assistant", "system"]
    content: StrictStr
    timestamp: StrictStr
    status: Literal["sending", "streaming", "complete", "error"]

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        parse_timestamp(v)
        return v


class StoredSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conversationId: StrictStr = Field(min_length=1)
    messages: List[StoredMessage]
    lastUpdated: StrictStr

    @field_validator("lastUpdated")
    @classmethod
    def validate_last_updated(cls, v: str) -> str:
        parse_timestamp(v)
        return v


def encode_session(conversation: Conversation, now: Optional[datetime] = None) -> str:
    record = {
        "conversationId": conversation.conversation_id,
        "messages": [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "timestamp": format_timestamp(m.timestamp),
                "status": m.status,
            }
            for m in conversation.messages
        ],
        "lastUpdated": format_timestamp(now or utc_now()),
    }
    return json.dumps(record, ensure_ascii=False)


def decode_session(raw: Optional[str]) -> Optional[Conversation]:
    if not raw:
        return None
    try:
        session = StoredSession.model_validate_json(raw)
    except (SchemaError, ValueError) as exc:
        logger.warning(
            "Discarded unreadable chat session",
            extra={"extra": {"error": type(exc).__name__}},
        )
        return None
    messages = tuple(
        Message(
            id=m.id,
            role=m.role,
            content=m.content,
            timestamp=parse_timestamp(m.timestamp),
            status=m.status,
        )
        for m in session.messages
    )
    return Conversation(conversation_id=session.conversationId, messages=messages)
