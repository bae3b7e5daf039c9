"""OpenAI 兼容 chat/completions 端点的流式客户端。

- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本模块负责：

1. 从 settings 与单次调用参数解析出不可变的 CompletionConfig。
2. 构造请求体（system prompt + 历史消息，stream=true）。
3. 发送请求，并把网络/HTTP/协议层的失败归一化为 CompletionError 子类。
4. 通过 stream_decoder 把响应体解码为逐段文本。

本模块不做重试：是否重试由调用方（ConversationStore）决定。
"""

import time
from typing import Any, Dict, Iterator, List, Sequence

import httpx

from portfolio_chat.config.settings import settings
from portfolio_chat.domain.exceptions import (
    ApiKeyMissingError,
    CompletionError,
    InvalidResponseError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
)
from portfolio_chat.domain.models import (
    ChunkEvent,
    CompletionConfig,
    ConversationMessage,
    DoneEvent,
    ErrorEvent,
)
from portfolio_chat.infrastructure.logging.logger import logger
from portfolio_chat.providers.registry import OPENAI_CONFIG, token_limit_param
from portfolio_chat.providers.stream_decoder import decode_events, parse_completion_payload


MODERATION_MODEL = "omni-moderation-latest"


class OpenAIClient:
    """Completion Provider 客户端实现。"""

    name = "openai"

    def __init__(self, cfg=settings):
        self._settings = cfg

    # ---- 配置 ----

    def resolve_config(self, **overrides: Any) -> CompletionConfig:
        """合并 settings 默认值与单次调用覆盖项。

        凭据缺失时抛出 ApiKeyMissingError，调用方据此在发起任何网络请求前失败。
        """

        unknown = set(overrides) - {
            "api_key",
            "model",
            "temperature",
            "max_tokens",
            "timeout_ms",
            "base_url",
            "response_format",
        }
        if unknown:
            raise TypeError(f"Unknown completion options: {sorted(unknown)}")

        api_key = overrides.get("api_key") or getattr(self._settings, "openai_api_key", None)
        if not api_key:
            raise ApiKeyMissingError(detail="OPENAI_API_KEY not set")

        def pick(key: str, setting: str, default: Any) -> Any:
            value = overrides.get(key)
            if value is not None:
                return value
            value = getattr(self._settings, setting, None)
            return default if value is None else value

        return CompletionConfig(
            api_key=api_key,
            model=pick("model", "openai_model", OPENAI_CONFIG.default_model),
            temperature=pick("temperature", "chat_temperature", OPENAI_CONFIG.default_temperature),
            max_tokens=pick("max_tokens", "chat_max_tokens", OPENAI_CONFIG.default_max_tokens),
            timeout_ms=pick("timeout_ms", "chat_timeout_ms", OPENAI_CONFIG.default_timeout_ms),
            base_url=pick("base_url", "openai_base_url", OPENAI_CONFIG.base_url).rstrip("/"),
            response_format=overrides.get("response_format"),
        )

    # ---- 流式 ----

    def stream_completion(
        self,
        system_prompt: str,
        history: Sequence[ConversationMessage],
        **overrides: Any,
    ) -> Iterator[str]:
        """发起一次流式调用，返回惰性的文本片段序列。

        配置在这里同步解析（凭据缺失会立即抛出），真正的 HTTP 请求
        在第一次迭代时才发出。
        """

        config = self.resolve_config(**overrides)
        payload = self._build_payload(system_prompt, history, config)
        return self._stream(payload, config)

    def get_completion(
        self,
        system_prompt: str,
        history: Sequence[ConversationMessage],
        **overrides: Any,
    ) -> str:
        """读完整个流并拼接为完整回答。"""

        return "".join(self.stream_completion(system_prompt, history, **overrides))

    # ---- 内容审核 ----

    def moderate(self, text: str, model: str = MODERATION_MODEL) -> Dict[str, Any]:
        """调用 /moderations，返回第一条结果（含 flagged 与 categories）。

        失败映射与流式调用相同；响应不是预期结构时抛出 InvalidResponseError。
        """

        config = self.resolve_config()
        log_ctx = {"provider": self.name, "model": model, "input_length": len(text)}
        try:
            with httpx.Client(timeout=config.timeout_seconds, trust_env=False) as client:
                resp = client.post(
                    f"{config.base_url}/moderations",
                    json={"model": model, "input": text},
                    headers={
                        "Authorization": f"Bearer {config.api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(detail=type(e).__name__)
        except httpx.HTTPError as e:
            logger.error("Network error", extra={"extra": {**log_ctx, "error": type(e).__name__}})
            raise NetworkError(detail=type(e).__name__)
        self._raise_for_status(resp, log_ctx)
        try:
            result = resp.json()["results"][0]
        except (ValueError, KeyError, IndexError, TypeError):
            raise InvalidResponseError(detail="unexpected moderation payload")
        if not isinstance(result, dict):
            raise InvalidResponseError(detail="unexpected moderation payload")
        return result

    # ---- 辅助方法 ----

    def _stream(self, payload: Dict[str, Any], config: CompletionConfig) -> Iterator[str]:
        log_ctx = {"provider": self.name, "model": config.model, "message_count": len(payload["messages"])}
        start_time = time.time()
        chunk_count = 0
        logger.info("Calling completion endpoint", extra={"extra": log_ctx})
        try:
            with httpx.Client(timeout=config.timeout_seconds, trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{config.base_url}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {config.api_key}",
                        "Content-Type": "application/json",
                    },
                ) as resp:
                    logger.debug(
                        "Completion response received",
                        extra={"extra": {**log_ctx, "status": resp.status_code,
                                         "latency_ms": int((time.time() - start_time) * 1000)}},
                    )
                    self._raise_for_status(resp, log_ctx)
                    for event in decode_events(self._iter_body(resp), parse_completion_payload):
                        if isinstance(event, ChunkEvent):
                            chunk_count += 1
                            yield event.content
                        elif isinstance(event, ErrorEvent):
                            logger.error(
                                "Completion stream reported an error",
                                extra={"extra": {**log_ctx, "detail": event.message[:200]}},
                            )
                            raise ServerError(code="STREAM_ERROR", detail=event.message)
                        elif isinstance(event, DoneEvent):
                            logger.debug("Stream completed", extra={"extra": {**log_ctx, "chunks": chunk_count}})
                            return
                    logger.warning(
                        "Stream ended without done sentinel",
                        extra={"extra": {**log_ctx, "chunks": chunk_count}},
                    )
        except CompletionError:
            raise
        except httpx.TimeoutException as e:
            logger.warning("Completion request timed out", extra={"extra": {**log_ctx, "timeout_ms": config.timeout_ms}})
            raise RequestTimeoutError(detail=type(e).__name__)
        except httpx.HTTPError as e:
            logger.error("Network error", extra={"extra": {**log_ctx, "error": type(e).__name__}})
            raise NetworkError(detail=type(e).__name__)

    @staticmethod
    def _iter_body(resp) -> Iterator[bytes]:
        """逐块读取响应体；一个字节都没有读到视为无效响应。"""

        received = False
        for raw in resp.iter_bytes():
            if raw:
                received = True
                yield raw
        if not received:
            raise InvalidResponseError(detail="empty response body")

    @staticmethod
    def _raise_for_status(resp, log_ctx: Dict[str, Any]) -> None:
        status = resp.status_code
        if status < 400:
            return
        body = resp.read()
        excerpt = body.decode("utf-8", errors="replace")[:500] if body else ""
        logger.error("Completion API error", extra={"extra": {**log_ctx, "status": status, "body": excerpt}})
        if status == 429:
            raise RateLimitError(http_status=429, status=status)
        if status == 401:
            raise ApiKeyMissingError(code="INVALID_API_KEY", http_status=401, status=status)
        raise ServerError(http_status=status, status=status)

    def _build_payload(
        self,
        system_prompt: str,
        history: Sequence[ConversationMessage],
        config: CompletionConfig,
    ) -> Dict[str, Any]:
        msgs: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
        msgs.extend(m.to_payload() for m in history)
        payload: Dict[str, Any] = {
            "model": config.model,
            "messages": msgs,
            "temperature": config.temperature,
            token_limit_param(config.model): config.max_tokens,
            "stream": True,
        }
        if config.response_format:
            payload["response_format"] = {"type": config.response_format}
        return payload
