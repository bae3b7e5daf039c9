"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或会话层做统一捕获与用户提示。

CompletionError 及其子类在 Completion Client 边界产生：
网络/协议层的原始异常在这里被归一化为固定的错误类型，
message 只保留模板化的用户文案，诊断信息放在 extra 中仅供日志使用。
"""

from typing import Dict, Optional, Type

from portfolio_chat.domain.models import ChatError


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 status、body 片段等），只写日志。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或输入校验失败（如空消息），本地拒绝，不可重试。"""

    kind = "validation"
    retryable = False


class CompletionError(BusinessError):
    """Completion 调用失败的基类，kind/retryable 由子类固定。"""

    kind = "unknown"
    retryable = False
    default_code = "COMPLETION_ERROR"
    default_message = "An unexpected error occurred. Please try again."

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, http_status: int = 502, **extra):
        super().__init__(
            code=code or self.default_code,
            message=message or self.default_message,
            http_status=http_status,
            **extra,
        )

    def to_chat_error(self) -> ChatError:
        return ChatError(kind=self.kind, message=self.message, retryable=self.retryable)


class NetworkError(CompletionError):
    """网络层错误，例如连接被拒绝、DNS 失败等。"""

    kind = "network"
    retryable = True
    default_code = "NETWORK_ERROR"
    default_message = "Unable to connect. Please check your connection and try again."


class RequestTimeoutError(CompletionError):
    """超过配置的 timeout_ms 仍未完成。"""

    kind = "timeout"
    retryable = True
    default_code = "TIMEOUT"
    default_message = "The response is taking too long. Please try again."


class ServerError(CompletionError):
    """Provider 返回 5xx（或其他非预期状态码），或在流中返回错误。"""

    kind = "server"
    retryable = True
    default_code = "SERVER_ERROR"
    default_message = "Something went wrong on our end. Please try again."


class RateLimitError(CompletionError):
    """Provider 限流错误，由上层决定是否重试。"""

    kind = "rate_limit"
    retryable = True
    default_code = "RATE_LIMIT"
    default_message = "Too many requests. Please wait a moment and try again."


class ApiKeyMissingError(CompletionError):
    """凭据未配置或被拒绝（401）。"""

    kind = "api_key_missing"
    retryable = False
    default_code = "MISSING_API_KEY"
    default_message = "The assistant is not available right now. Please try again later."


class InvalidResponseError(CompletionError):
    """Provider 没有返回可读的响应体。"""

    kind = "invalid_response"
    retryable = False
    default_code = "INVALID_RESPONSE"
    default_message = "Received an unexpected response. Please try again."


class UnknownCompletionError(CompletionError):
    """无法归类的失败。"""

    kind = "unknown"
    retryable = True
    default_code = "UNKNOWN_ERROR"


_ERRORS_BY_KIND: Dict[str, Type[CompletionError]] = {
    cls.kind: cls
    for cls in (
        NetworkError,
        RequestTimeoutError,
        ServerError,
        RateLimitError,
        ApiKeyMissingError,
        InvalidResponseError,
        UnknownCompletionError,
    )
}


def error_for_kind(kind: Optional[str], message: Optional[str] = None, **extra) -> CompletionError:
    """根据 kind 重建异常（用于解析自有协议中的 error 事件）。"""

    cls = _ERRORS_BY_KIND.get(kind or "", UnknownCompletionError)
    return cls(message=message, **extra)


def user_message_for(kind: str) -> str:
    """返回某一错误类型对应的用户文案。"""

    return _ERRORS_BY_KIND.get(kind, UnknownCompletionError).default_message
