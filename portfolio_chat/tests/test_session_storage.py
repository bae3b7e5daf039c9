import json

import pytest

from portfolio_chat.domain.conversation import CHAT_STORAGE_KEY
from portfolio_chat.domain.exceptions import BusinessError
from portfolio_chat.infrastructure.storage.session_storage import JsonFileSessionStorage, MemorySessionStorage


def test_memory_storage_roundtrip():
    storage = MemorySessionStorage()
    assert storage.get_item(CHAT_STORAGE_KEY) is None
    storage.set_item(CHAT_STORAGE_KEY, "v1")
    storage.set_item(CHAT_STORAGE_KEY, "v2")
    assert storage.get_item(CHAT_STORAGE_KEY) == "v2"
    storage.remove_item(CHAT_STORAGE_KEY)
    storage.remove_item(CHAT_STORAGE_KEY)
    assert storage.get_item(CHAT_STORAGE_KEY) is None


def test_json_file_storage_persists_per_tab(tmp_path):
    tab_a = JsonFileSessionStorage("tab-a", root=tmp_path)
    tab_b = JsonFileSessionStorage("tab-b", root=tmp_path)
    tab_a.set_item(CHAT_STORAGE_KEY, '{"x": "你好"}')
    assert tab_b.get_item(CHAT_STORAGE_KEY) is None

    reopened = JsonFileSessionStorage("tab-a", root=tmp_path)
    assert reopened.get_item(CHAT_STORAGE_KEY) == '{"x": "你好"}'
    assert (tmp_path / "sessions" / "tab-a" / "portfolio-chat-session.json").exists()
    # 原子写入不留下临时文件
    assert not list((tmp_path / "sessions" / "tab-a").glob("*.tmp"))


def test_json_file_storage_remove(tmp_path):
    storage = JsonFileSessionStorage("tab", root=tmp_path)
    storage.set_item(CHAT_STORAGE_KEY, "v")
    storage.remove_item(CHAT_STORAGE_KEY)
    storage.remove_item(CHAT_STORAGE_KEY)
    assert storage.get_item(CHAT_STORAGE_KEY) is None


@pytest.mark.parametrize("tab_id", ["", "..", "a/b", "a\\b"])
def test_invalid_tab_id(tmp_path, tab_id):
    with pytest.raises(BusinessError) as exc_info:
        JsonFileSessionStorage(tab_id, root=tmp_path)
    assert exc_info.value.code == "INVALID_TAB_ID"


def test_write_failure_raises_business_error(tmp_path, monkeypatch):
    storage = JsonFileSessionStorage("tab", root=tmp_path)

    def broken_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("portfolio_chat.infrastructure.storage.session_storage.os.replace", broken_replace)
    with pytest.raises(BusinessError) as exc_info:
        storage.set_item(CHAT_STORAGE_KEY, "v")
    assert exc_info.value.code == "STORE_WRITE_ERROR"
    assert not list((tmp_path / "sessions" / "tab").iterdir())


def test_unencodable_value_raises_business_error(tmp_path):
    storage = JsonFileSessionStorage("tab", root=tmp_path)
    lone_surrogate = json.loads('"\\ud83d"')
    with pytest.raises(BusinessError) as exc_info:
        storage.set_item(CHAT_STORAGE_KEY, "reply " + lone_surrogate)
    assert exc_info.value.code == "STORE_WRITE_ERROR"
    assert not list((tmp_path / "sessions" / "tab").iterdir())
