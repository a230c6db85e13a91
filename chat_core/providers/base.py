"""Provider 抽象接口。

上层 ChatAgent 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 DeepSeekClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把 SSE 响应逐行解析为 ChatStreamChunk。
"""

from typing import Iterator, Optional, Protocol

from chat_core.domain.models import ChatRequest, ChatStreamChunk


class CancelSignal(Protocol):
    def is_cancelled(self) -> bool:
        ...


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - chat_stream(req, cancel_signal): 执行一次流式对话调用，逐步产出增量；
      cancel_signal 被触发后应尽快停止读取并关闭连接。
    """

    name: str

    def chat_stream(
        self, req: ChatRequest, cancel_signal: Optional[CancelSignal] = None
    ) -> Iterator[ChatStreamChunk]:
        ...
