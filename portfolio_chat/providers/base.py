"""Provider 抽象接口。

上层 ConversationStore 不直接依赖具体厂商的 HTTP 客户端，而是依赖此处的协议：

- CompletionProvider: 拿 system prompt 与历史消息发起一次流式 completion。
- ReplySource: 只拿历史消息、产出回答片段的更窄接口。ConversationStore
  只认这个接口，既可以直接接 CompletionProvider（经 CompletionReplySource
  绑定 system prompt），也可以接远端 /api/chat（api.client.ChatApiClient）。
"""

from dataclasses import dataclass
from typing import Any, Iterator, Protocol, Sequence

from portfolio_chat.domain.models import ConversationMessage


class CompletionProvider(Protocol):
    """Completion Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - stream_completion: 惰性的文本片段序列，失败时抛出 CompletionError。
    - get_completion: 读完整个流后返回完整文本。
    """

    name: str

    def stream_completion(
        self, system_prompt: str, history: Sequence[ConversationMessage], **overrides: Any
    ) -> Iterator[str]:
        ...

    def get_completion(
        self, system_prompt: str, history: Sequence[ConversationMessage], **overrides: Any
    ) -> str:
        ...


class ReplySource(Protocol):
    def stream_reply(self, history: Sequence[ConversationMessage]) -> Iterator[str]:
        ...


@dataclass
class CompletionReplySource:
    """把 system prompt 绑定到一个 CompletionProvider 上。"""

    provider: CompletionProvider
    system_prompt: str

    def stream_reply(self, history: Sequence[ConversationMessage]) -> Iterator[str]:
        return self.provider.stream_completion(self.system_prompt, history)
