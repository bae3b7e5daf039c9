import os
from pathlib import Path
from typing import Dict, Optional
from uuid import uuid4

from portfolio_chat.config.settings import settings
from portfolio_chat.domain.conversation import SessionStorage
from portfolio_chat.domain.exceptions import BusinessError, ValidationError


class MemorySessionStorage(SessionStorage):
    """进程内存储，生命周期与对象相同。"""

    def __init__(self, items: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileSessionStorage(SessionStorage):
    """每个标签页一个目录，每个 key 一个 JSON 文件。"""

    def __init__(self, tab_id: str, root: str | Path | None = None):
        if not tab_id or "/" in tab_id or "\\" in tab_id or tab_id in (".", ".."):
            raise ValidationError(code="INVALID_TAB_ID", message=f"Invalid tab id: {tab_id!r}")
        self._root = Path(root or settings.storage_root).resolve()
        self._tab_root = self._root / "sessions" / tab_id
        self._tab_root.mkdir(parents=True, exist_ok=True)

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = self._tab_root / f"{path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, UnicodeError) as e:
            # 例如内容里有无法编码为 UTF-8 的孤立代理字符
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        finally:
            tmp_path.unlink(missing_ok=True)

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in key)
        return self._tab_root / f"{safe}.json"
