"""统一的对话数据模型。

本模块定义了聊天子系统内部共享的标准数据结构：

- Message: 会话记录中的一条消息（user/assistant/system），带状态与时间戳。
- Conversation: 会话 ID 与有序消息序列。
- ChatError: 面向用户的错误信息（类型、可读文案、是否可重试）。
- CompletionConfig: 单次 completion 请求的不可变配置。
- ConversationMessage: 发给上游模型的历史消息（只含 role/content）。
- ChunkEvent / DoneEvent / ErrorEvent: 流式解码产出的事件。

Message 与 Conversation 都是不可变的，只有 flows.reducer 会基于旧值
产生新值，展示层拿到的永远是只读快照。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Tuple, Union


# 消息角色与状态
Role = Literal["user", "assistant", "system"]
MessageStatus = Literal["sending", "streaming", "complete", "error"]

# 面向客户端的错误类型
ChatErrorKind = Literal[
    "network",
    "timeout",
    "server",
    "rate_limit",
    "api_key_missing",
    "invalid_response",
    "unknown",
]

ROLES: Tuple[str, ...] = ("user", "assistant", "system")
MESSAGE_STATUSES: Tuple[str, ...] = ("sending", "streaming", "complete", "error")


def utc_now() -> datetime:
    """当前 UTC 时间，截断到毫秒（与持久化格式的精度一致）。"""

    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


@dataclass(frozen=True)
class Message:
    """会话中的一条消息。

    - content: 在 status 为 "streaming" 时只增不减，进入 complete/error 后冻结。
    - timestamp: 带时区的 UTC 时间，精度为毫秒。
    """

    id: str
    role: Role
    content: str
    timestamp: datetime
    status: MessageStatus


@dataclass(frozen=True)
class Conversation:
    conversation_id: str
    messages: Tuple[Message, ...] = ()


@dataclass(frozen=True)
class ChatError:
    """面向用户的错误记录，message 只包含模板化文案。"""

    kind: ChatErrorKind
    message: str
    retryable: bool


@dataclass(frozen=True)
class ConversationMessage:
    """发给上游模型的一条历史消息。"""

    role: Literal["user", "assistant"]
    content: str

    def to_payload(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CompletionConfig:
    """一次 completion 请求的完整配置，请求期间不可变。"""

    api_key: str
    model: str
    temperature: float
    max_tokens: int
    timeout_ms: int
    base_url: str
    response_format: Optional[Literal["json_object"]] = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True)
class ChunkEvent:
    """一段增量文本。"""

    content: str
    type: Literal["chunk"] = field(default="chunk", init=False)


@dataclass(frozen=True)
class DoneEvent:
    """流正常结束。"""

    type: Literal["done"] = field(default="done", init=False)


@dataclass(frozen=True)
class ErrorEvent:
    """流以错误结束。kind/retryable 只在自有协议中出现。"""

    message: str
    kind: Optional[str] = None
    retryable: Optional[bool] = None
    type: Literal["error"] = field(default="error", init=False)


StreamEvent = Union[ChunkEvent, DoneEvent, ErrorEvent]
