"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在会话层或 UI 层做统一捕获与用户提示。

取消不是异常：它通过 Agent 的 "cancelled" 终态事件表达。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、conversation_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ProtocolError(BusinessError):
    """流式响应中出现无法解析的 chunk。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误，或 chunk 中携带 error 对象。"""


class RateLimitError(BusinessError):
    """Provider 限流错误。"""


class ValidationError(BusinessError):
    """参数校验失败（如发送空消息）。"""


class ConfigError(BusinessError):
    """缺少 API 密钥、endpoint 或模型配置，在构造阶段即失败。"""


class ConversationBusyError(BusinessError):
    """目标会话仍有未完成的请求时再次 send，属于调用方违约。"""


class ConversationNotFoundError(BusinessError):
    """会话不存在。"""
