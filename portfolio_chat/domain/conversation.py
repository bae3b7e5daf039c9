from typing import Optional, Protocol


# 每个标签页一条记录，固定 key
CHAT_STORAGE_KEY = "portfolio-chat-session"


class SessionStorage(Protocol):
    """按标签页隔离的持久化键值存储（语义与浏览器 sessionStorage 相同）。"""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...
