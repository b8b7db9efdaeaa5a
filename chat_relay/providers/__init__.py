"""上游 AI 服务集成层。

该包下的模块负责：
- 定义上游客户端抽象接口 (base)。
- 提供各厂商的具体实现 (如 dify_client)。
"""

from typing import Optional

import httpx

from chat_relay.config.settings import settings
from chat_relay.providers.base import UpstreamClient
from chat_relay.providers.dify_client import DifyClient


def create_provider(
    name: Optional[str] = None,
    cfg=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UpstreamClient:
    """根据名称创建上游客户端实例。"""

    provider_name = (name or "dify").lower()
    if provider_name != "dify":
        raise KeyError(f"Unknown provider: {name!r}")
    return DifyClient(cfg or settings, transport=transport)
