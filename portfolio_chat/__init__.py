"""Portfolio Chat 顶层包。

作品集站点对话助手的核心实现：流式响应解码、Completion 客户端、
会话状态机与会话持久化，以及对外的 /api/chat 路由。
"""

from portfolio_chat.agents.conversation_store import ConversationStore

__all__ = ["ConversationStore"]
