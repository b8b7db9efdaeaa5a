"""领域层模型与协议。

包含：
- models: 统一的 ChatRequest / StreamEvent / ChatAnswer 模型。
- conversation: 会话消息、流式累积缓冲与 HistoryStore 抽象。
- exceptions: 业务异常类型定义。
"""
