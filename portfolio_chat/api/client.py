"""/api/chat 的 HTTP 客户端。

ChatApiClient 实现 ReplySource 协议，让 ConversationStore 可以通过
本服务的 /api/chat 路由取回答，而不是直接调用上游 Provider。
"""

import time
from contextlib import nullcontext
from typing import Any, Dict, Iterator, Optional, Sequence

import httpx

from portfolio_chat.domain.exceptions import (
    ApiKeyMissingError,
    CompletionError,
    InvalidResponseError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnknownCompletionError,
    error_for_kind,
)
from portfolio_chat.domain.models import ChunkEvent, ConversationMessage, DoneEvent, ErrorEvent
from portfolio_chat.infrastructure.logging.logger import logger
from portfolio_chat.providers.stream_decoder import decode_events, parse_chat_payload


CHAT_PATH = "/api/chat"


class ChatApiClient:
    def __init__(
        self,
        base_url: str = "",
        timeout_ms: int = 30000,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms
        # 外部传入的 client 由调用方负责关闭
        self._http_client = http_client

    def stream_reply(self, history: Sequence[ConversationMessage]) -> Iterator[str]:
        """POST 历史消息，逐段产出回答文本。失败时抛出 CompletionError 子类。"""

        payload = {"messages": [m.to_payload() for m in history]}
        log_ctx = {"url": f"{self.base_url}{CHAT_PATH}", "message_count": len(history)}
        start_time = time.time()
        logger.info("Calling chat route", extra={"extra": log_ctx})
        try:
            with self._client() as client:
                with client.stream("POST", f"{self.base_url}{CHAT_PATH}", json=payload) as resp:
                    self._raise_for_status(resp, log_ctx)
                    received = False
                    for event in decode_events(resp.iter_bytes(), parse_chat_payload):
                        received = True
                        if isinstance(event, ChunkEvent):
                            yield event.content
                        elif isinstance(event, ErrorEvent):
                            logger.warning(
                                "Chat route reported an error",
                                extra={"extra": {**log_ctx, "kind": event.kind}},
                            )
                            raise error_for_kind(event.kind, event.message)
                        elif isinstance(event, DoneEvent):
                            break
                    if not received:
                        raise InvalidResponseError(detail="no events in response")
            logger.debug(
                "Chat route completed",
                extra={"extra": {**log_ctx, "latency_ms": int((time.time() - start_time) * 1000)}},
            )
        except CompletionError:
            raise
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(detail=type(e).__name__)
        except httpx.HTTPError as e:
            logger.error("Network error", extra={"extra": {**log_ctx, "error": type(e).__name__}})
            raise NetworkError(detail=type(e).__name__)

    def _client(self):
        if self._http_client is not None:
            return nullcontext(self._http_client)
        return httpx.Client(timeout=self.timeout_ms / 1000.0, trust_env=False)

    @staticmethod
    def _raise_for_status(resp, log_ctx: Dict[str, Any]) -> None:
        status = resp.status_code
        if status < 400:
            return
        body = resp.read()
        excerpt = body.decode("utf-8", errors="replace")[:500] if body else ""
        logger.error("Chat route error", extra={"extra": {**log_ctx, "status": status, "body": excerpt}})
        if status == 429:
            raise RateLimitError(http_status=429, status=status)
        if status == 401:
            raise ApiKeyMissingError(http_status=401, status=status)
        if status >= 500:
            raise ServerError(http_status=status, status=status)
        raise UnknownCompletionError(http_status=status, status=status)
