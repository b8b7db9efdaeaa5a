"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或客户端会话层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "QUERY_REQUIRED"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 upstream_status）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    def to_payload(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(BusinessError):
    """请求参数校验失败（例如 query 为空）。"""


class AccessDeniedError(BusinessError):
    """公共访问被关闭。"""

    def __init__(self, code: str = "ACCESS_DISABLED", message: str = "Public access is disabled", **extra):
        super().__init__(code, message, http_status=403, **extra)


class ConfigurationError(BusinessError):
    """服务端配置缺失（如未配置 API Key），不应重试。"""

    def __init__(self, code: str, message: str, **extra):
        super().__init__(code, message, http_status=500, **extra)


class UpstreamError(BusinessError):
    """上游 AI 服务不可用，可由兜底策略替换为固定回答。"""

    def __init__(self, code: str, message: str, http_status: int = 503, **extra):
        super().__init__(code, message, http_status=http_status, **extra)


class NetworkError(UpstreamError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(UpstreamError):
    """上游 API 返回非 2xx 时抛出。"""


class StreamError(BusinessError):
    """客户端读取流式响应时的错误基类。"""


class StreamTimeoutError(StreamError):
    """在限定时间内没有收到任何字节。"""


class StreamTransportError(StreamError):
    """连接在流中途断开。"""


class SendInProgressError(BusinessError):
    """同一会话已有未完成的发送。"""

    def __init__(self, code: str = "SEND_IN_PROGRESS", message: str = "A message is already being sent", **extra):
        super().__init__(code, message, http_status=409, **extra)
