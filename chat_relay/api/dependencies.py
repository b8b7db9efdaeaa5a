"""FastAPI 路由的依赖注入。

测试通过 `app.dependency_overrides` 替换这些依赖。
"""

from fastapi import Depends

from chat_relay.config.settings import Settings, settings
from chat_relay.relay.service import RelayService


def get_settings() -> Settings:
    """返回进程级配置对象。"""
    return settings


def get_relay_service(cfg: Settings = Depends(get_settings)) -> RelayService:
    """为单次请求构造无状态的 RelayService。"""
    return RelayService(cfg)


def require_public_access(service: RelayService = Depends(get_relay_service)) -> None:
    """公共访问关闭时，所有聊天请求直接返回 403。"""
    service.check_access()
