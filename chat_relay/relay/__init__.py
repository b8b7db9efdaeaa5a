"""Relay Endpoint 策略（访问控制、校验、演示与兜底）。"""

from chat_relay.relay.service import RelayResult, RelayService

__all__ = ["RelayResult", "RelayService"]
