"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 默认配置 (registry)。
- 解码流式响应 (stream_decoder)。
- 提供具体实现 (openai_client)。
"""

from typing import Optional

from portfolio_chat.config.settings import settings
from portfolio_chat.providers.base import CompletionProvider, CompletionReplySource, ReplySource
from portfolio_chat.providers.openai_client import OpenAIClient
from portfolio_chat.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None) -> CompletionProvider:
    """根据名称创建 Provider 实例，目前只有 openai。"""

    get_provider_config(name or OpenAIClient.name)
    return OpenAIClient(settings)


__all__ = [
    "CompletionProvider",
    "CompletionReplySource",
    "OpenAIClient",
    "ReplySource",
    "create_provider",
]
