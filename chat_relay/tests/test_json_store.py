import tempfile
from pathlib import Path

import pytest

from chat_relay.domain.exceptions import BusinessError
from chat_relay.infrastructure.storage.json_store import JsonHistoryStore


def test_json_store_save_and_load():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonHistoryStore(root=root)
        assert store.load("s-1") == []
        store.save("s-1", [{"id": "m1", "role": "user", "content": "你好"}])
        msgs = store.load("s-1")
        assert len(msgs) == 1
        assert msgs[0]["content"] == "你好"


def test_json_store_last_write_wins():
    with tempfile.TemporaryDirectory() as d:
        store = JsonHistoryStore(root=Path(d))
        store.save("s-1", [{"id": "m1"}])
        store.save("s-1", [{"id": "m2"}, {"id": "m3"}])
        assert [m["id"] for m in store.load("s-1")] == ["m2", "m3"]
        # 原子写入不留临时文件
        assert not list((Path(d) / "history").glob("*.tmp"))


def test_json_store_delete():
    with tempfile.TemporaryDirectory() as d:
        store = JsonHistoryStore(root=Path(d))
        store.save("s-1", [{"id": "m1"}])
        store.delete("s-1")
        store.delete("s-1")
        assert store.load("s-1") == []


def test_json_store_rejects_corrupt_file(tmp_path):
    store = JsonHistoryStore(root=tmp_path)
    (tmp_path / "history" / "s-1.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(BusinessError) as exc:
        store.load("s-1")
    assert exc.value.code == "STORE_READ_ERROR"
