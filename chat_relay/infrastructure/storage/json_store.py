import json
import os
from pathlib import Path
from typing import Any, Dict, List
from uuid import uuid4

from chat_relay.config.settings import settings
from chat_relay.domain.conversation import HistoryStore
from chat_relay.domain.exceptions import BusinessError


class JsonHistoryStore(HistoryStore):
    """按 key 把聊天记录保存成单个 JSON 文件。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._history_root = self._root / "history"
        self._history_root.mkdir(parents=True, exist_ok=True)

    def load(self, key: str) -> List[Dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except Exception as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        if not isinstance(data, list):
            raise BusinessError(code="STORE_READ_ERROR", message=f"history {key!r} is not a list")
        return data

    def save(self, key: str, messages: List[Dict[str, Any]]) -> None:
        path = self._path(key)
        tmp_path = self._history_root / f"{path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(messages, ensure_ascii=False, default=str), encoding="utf-8")
            os.replace(tmp_path, path)
        except Exception as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except Exception as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in key)
        if not safe:
            raise BusinessError(code="STORE_KEY_INVALID", message=repr(key))
        return self._history_root / f"{safe}.json"
