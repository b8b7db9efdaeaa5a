"""Chat Relay 顶层包。

该包提供流式聊天中继的核心实现，
包括配置加载、领域模型、上游适配、Relay HTTP 服务、
客户端流式消费会话与聊天记录持久化等能力。
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
