"""领域层模型与协议。

包含：
- models: Message / Conversation / ChatError / CompletionConfig 以及流事件。
- conversation: 会话持久化所用的 SessionStorage 协议与存储 key。
- exceptions: 业务异常类型与 Completion 错误分类。
"""
