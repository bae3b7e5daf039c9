"""流式响应解码。

把传输层按任意边界切开的字节块还原为按行分隔的事件记录，
再把每条 `data:` 记录解析为 ChunkEvent / DoneEvent / ErrorEvent。

- 记录可能跨多次读取被切开，只缓冲到下一个换行符为止。
- 多字节 UTF-8 字符也可能被切开，使用增量解码器处理。
- 单条记录格式错误（非 JSON、缺少字段）直接跳过。
- 收到 `[DONE]` 或错误事件后序列结束，不再产出任何事件。

同一套分帧逻辑服务两种负载：上游 chat/completions 的增量格式
（parse_completion_payload）以及本服务 /api/chat 重新发出的事件格式
（parse_chat_payload）。
"""

import codecs
import json
from typing import Any, Callable, Iterable, Iterator, Optional, Union

from portfolio_chat.domain.models import ChunkEvent, DoneEvent, ErrorEvent, StreamEvent
from portfolio_chat.infrastructure.logging.logger import logger


DONE_SENTINEL = "[DONE]"
DATA_FIELD = "data:"

PayloadParser = Callable[[Any], Optional[StreamEvent]]


def _field_value(line: str) -> Optional[str]:
    """取出一行中 data 字段的值；空行、注释行与其他字段返回 None。"""

    stripped = line.strip()
    if not stripped or stripped.startswith(":"):
        return None
    if not stripped.startswith(DATA_FIELD):
        return None
    return stripped[len(DATA_FIELD):].strip()


def iter_event_data(chunks: Iterable[Union[bytes, str]]) -> Iterator[str]:
    """按行重组事件记录，逐条产出 data 字段的值。"""

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    for raw in chunks:
        buffer += raw if isinstance(raw, str) else decoder.decode(raw)
        if "\n" not in buffer:
            continue
        *lines, buffer = buffer.split("\n")
        for line in lines:
            data = _field_value(line)
            if data is not None:
                yield data
    buffer += decoder.decode(b"", final=True)
    # 传输结束时，最后一条记录可能没有换行符
    for line in buffer.split("\n"):
        data = _field_value(line)
        if data is not None:
            yield data


def parse_completion_payload(payload: Any) -> Optional[StreamEvent]:
    """解析上游 chat/completions 流中的一条 JSON 负载。"""

    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return ErrorEvent(message=message or "Upstream error")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return ChunkEvent(content=content)
    # 只有 role 或 finish_reason 的增量不携带文本
    return None


def parse_chat_payload(payload: Any) -> Optional[StreamEvent]:
    """解析 /api/chat 重新发出的 {type: chunk|done|error} 事件。"""

    if not isinstance(payload, dict):
        return None
    kind = payload.get("type")
    if kind == "chunk":
        content = payload.get("content")
        if isinstance(content, str) and content:
            return ChunkEvent(content=content)
        return None
    if kind == "done":
        return DoneEvent()
    if kind == "error":
        message = payload.get("message")
        retryable = payload.get("retryable")
        return ErrorEvent(
            message=message if isinstance(message, str) and message else "Unknown error occurred",
            kind=payload.get("kind") if isinstance(payload.get("kind"), str) else None,
            retryable=retryable if isinstance(retryable, bool) else None,
        )
    return None


def decode_events(
    chunks: Iterable[Union[bytes, str]],
    parse_payload: PayloadParser = parse_completion_payload,
) -> Iterator[StreamEvent]:
    """把字节流解码为有限、有序、至多一个终止事件的事件序列。"""

    skipped = 0
    for data in iter_event_data(chunks):
        if data == DONE_SENTINEL:
            yield DoneEvent()
            return
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            skipped += 1
            logger.debug("Skipped malformed stream record", extra={"extra": {"skipped": skipped}})
            continue
        event = parse_payload(payload)
        if event is None:
            continue
        yield event
        if not isinstance(event, ChunkEvent):
            return


def encode_event(event: StreamEvent) -> str:
    """把事件渲染为一条 `data: <json>` 记录（以空行结束）。"""

    if isinstance(event, ChunkEvent):
        body: dict = {"type": "chunk", "content": event.content}
    elif isinstance(event, DoneEvent):
        body = {"type": "done"}
    elif isinstance(event, ErrorEvent):
        body = {"type": "error", "message": event.message}
        if event.kind is not None:
            body["kind"] = event.kind
        if event.retryable is not None:
            body["retryable"] = event.retryable
    else:
        raise TypeError(f"Unsupported stream event: {event!r}")
    return f"{DATA_FIELD} {json.dumps(body, ensure_ascii=False)}\n\n"
