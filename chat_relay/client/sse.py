"""`data: <JSON>` 事件行解析。

字节解码与分行交给 httpx 的 `Response.aiter_lines()`（内部带增量解码器，
跨块的多字节字符与半行都会被正确拼接），这里只负责把单行解析成 StreamEvent。
"""

import json
from typing import Optional

from chat_relay.domain.models import StreamEvent

DATA_PREFIX = "data: "


def parse_event(line: str) -> Optional[StreamEvent]:
    """解析单行；空行、注释、心跳以及 JSON 损坏的行返回 None。"""

    if not line.startswith(DATA_PREFIX):
        return None
    try:
        payload = json.loads(line[len(DATA_PREFIX):])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return StreamEvent.from_payload(payload)
