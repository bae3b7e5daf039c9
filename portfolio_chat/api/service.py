"""对外 HTTP 服务模块。

POST /api/chat 接收 {messages: [{role, content}]}，以 text/event-stream
重新发出 {type: chunk|done|error} 事件。错误事件只携带模板化的用户文案，
诊断信息只写日志。

调用模型前先用 Guardrails 检查最新一条用户消息，被拦截时只回一段
拒答文案（chunk + done），不调用模型。
"""

from typing import Callable, Iterator, List, Literal, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, StrictStr

from portfolio_chat.config.settings import settings
from portfolio_chat.domain.exceptions import CompletionError, UnknownCompletionError, user_message_for
from portfolio_chat.domain.models import ChunkEvent, ConversationMessage, DoneEvent, ErrorEvent
from portfolio_chat.guardrails import GuardrailsService, InputGuard, anonymized_request_id
from portfolio_chat.infrastructure.logging.logger import logger
from portfolio_chat.prompts import load_system_prompt
from portfolio_chat.providers import CompletionProvider, create_provider
from portfolio_chat.providers.stream_decoder import encode_event


INVALID_REQUEST_MESSAGE = "Invalid request format. Expected { messages: Array<{ role, content }> }"
EMPTY_REQUEST_MESSAGE = "At least one message is required"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: StrictStr


class ChatRequest(BaseModel):
    messages: List[ChatTurn]


def _no_knowledge() -> str:
    return ""


def create_app(
    client: Optional[CompletionProvider] = None,
    knowledge_loader: Optional[Callable[[], str]] = None,
    guardrails: Optional[InputGuard] = None,
) -> FastAPI:
    """构造 FastAPI 应用。

    Args:
        client: Completion Provider，默认按 settings 创建。
        knowledge_loader: 返回作品集事实材料的函数，每次请求调用一次。
        guardrails: 输入检查；未指定时，仅在使用默认 Provider 且配置了凭据时启用。
    """

    provider = client or create_provider()
    load_knowledge = knowledge_loader or _no_knowledge
    if not settings.has_credential and client is None:
        logger.warning("OPENAI_API_KEY is not set; chat requests will fail")
    guard = guardrails
    if guard is None and client is None and settings.has_credential and settings.chat_guardrails_enabled:
        guard = GuardrailsService(provider)

    app = FastAPI(title="portfolio-chat")

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info(
            "Rejected chat request",
            extra={"extra": {"path": request.url.path, "errors": len(exc.errors())}},
        )
        return JSONResponse(status_code=400, content={"error": INVALID_REQUEST_MESSAGE})

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    @app.post("/api/chat")
    def chat(body: ChatRequest, request: Request):
        if not body.messages:
            return JSONResponse(status_code=400, content={"error": EMPTY_REQUEST_MESSAGE})

        latest_user = next((m for m in reversed(body.messages) if m.role == "user"), None)
        if guard is not None and latest_user is not None:
            request_id = anonymized_request_id(
                request.client.host if request.client else "",
                request.headers.get("user-agent", ""),
            )
            verdict = guard.validate_input(latest_user.content, request_id=request_id)
            if not verdict.passed:
                return StreamingResponse(
                    iter([encode_event(ChunkEvent(content=verdict.user_message)), encode_event(DoneEvent())]),
                    media_type="text/event-stream",
                    headers=SSE_HEADERS,
                )

        history = [ConversationMessage(role=m.role, content=m.content) for m in body.messages]
        return StreamingResponse(
            _event_stream(provider, load_knowledge, history),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    return app


def _event_stream(
    provider: CompletionProvider,
    load_knowledge: Callable[[], str],
    history: List[ConversationMessage],
) -> Iterator[str]:
    log_ctx = {"message_count": len(history)}
    try:
        system_prompt = load_system_prompt(load_knowledge())
        for fragment in provider.stream_completion(system_prompt, history):
            yield encode_event(ChunkEvent(content=fragment))
        yield encode_event(DoneEvent())
    except CompletionError as exc:
        logger.error(
            "Chat completion failed",
            extra={"extra": {**log_ctx, "kind": exc.kind, "code": exc.code, **exc.extra}},
        )
        yield _error_event(exc)
    except Exception as exc:
        logger.exception("Chat route failed", extra={"extra": {**log_ctx, "error": type(exc).__name__}})
        yield _error_event(UnknownCompletionError())


def _error_event(exc: CompletionError) -> str:
    return encode_event(
        ErrorEvent(message=user_message_for(exc.kind), kind=exc.kind, retryable=exc.retryable)
    )


app = create_app()
