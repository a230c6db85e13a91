"""流式对话 Agent。

ChatAgent 只负责协议驱动：组装请求、消费 Provider 的流、把增量交给聚合器，
并以事件的形式把进度与终态交给调用方。它从不写 ConversationStore。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Literal, Optional, Sequence

from chat_core.agents.aggregator import StreamAggregator
from chat_core.agents.cancellation import CancellationToken
from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageRecord
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import ChatMessage, ChatRequest, ModelConfig
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderClient


EventKind = Literal["progress", "success", "error", "cancelled"]


@dataclass(frozen=True)
class AgentEvent:
    """ChatAgent 产生的事件。

    kind:
        - "progress": 聚合后的 (reasoning_content, content) 有了新进展。
        - "success": 流自然结束，携带最终内容与 usage。
        - "error": 网络/协议/API 错误，error 字段为原因。
        - "cancelled": 令牌被取消，携带取消时刻已聚合的内容。

    每次 run 恰好产生一个非 progress 事件，且它总是最后一个。
    """

    kind: EventKind
    conversation_id: str
    message_id: str
    model: str
    reasoning_content: str = ""
    content: str = ""
    error: Optional[BusinessError] = None
    usage: Optional[Dict[str, int]] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind != "progress"


class ChatAgent:
    def __init__(
        self,
        provider_client: ProviderClient,
        temperature: Optional[float] = None,
        max_context_messages: Optional[int] = None,
    ):
        self._provider_client = provider_client
        self._temperature = temperature if temperature is not None else getattr(settings, "temperature", None)
        self._max_context = max_context_messages or getattr(settings, "max_context_messages", 20)

    def run(
        self,
        conversation_id: str,
        message_id: str,
        user_text: str,
        history: Sequence[MessageRecord],
        model: ModelConfig,
        token: CancellationToken,
    ) -> Iterator[AgentEvent]:
        """执行一次流式请求。

        每收到一个 chunk 先检查令牌：已取消则立即停止读取、关闭流，
        并以 cancelled 结束，缓冲区里剩余的 chunk 不再生效。
        """

        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "message_id": message_id,
            "model": model.id,
        }
        agg = StreamAggregator(model.supports_reasoning_trace)

        def make_event(kind: EventKind, **fields: Any) -> AgentEvent:
            state = agg.state
            return AgentEvent(
                kind=kind,
                conversation_id=conversation_id,
                message_id=message_id,
                model=model.id,
                reasoning_content=state.reasoning_content,
                content=state.content,
                **fields,
            )

        if token.is_cancelled():
            self._log(logging.INFO, "Cancelled before dispatch", log_ctx, reason=token.reason)
            yield make_event("cancelled")
            return

        messages = self._build_messages(history, user_text)
        req = ChatRequest(
            provider=self._provider_client.name,
            model=model,
            messages=messages,
            temperature=self._temperature,
        )
        self._log(
            logging.INFO,
            "Calling provider (stream)",
            log_ctx,
            provider=self._provider_client.name,
            message_count=len(messages),
        )

        stream = None
        usage: Optional[Dict[str, int]] = None
        chunk_count = 0
        try:
            stream = self._provider_client.chat_stream(req, token)
            for chunk in stream:
                if token.is_cancelled():
                    break
                chunk_count += 1
                if chunk.usage:
                    usage = chunk.usage.as_meta()
                    self._log(logging.INFO, "Token usage", log_ctx, **usage)
                agg.feed(chunk.delta)
                yield make_event("progress")
        except BusinessError as e:
            if token.is_cancelled():
                # 取消后连接被关闭导致的错误按取消处理
                yield make_event("cancelled")
                return
            self._log(
                logging.WARNING,
                "Stream failed",
                log_ctx,
                code=e.code,
                error=e.message,
                chunks=chunk_count,
            )
            yield make_event("error", error=e)
            return
        except Exception as e:
            logger.exception("Unexpected stream failure", extra={"extra": dict(log_ctx)})
            yield make_event("error", error=BusinessError(code="UNEXPECTED_ERROR", message=str(e), http_status=500))
            return
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        elapsed = round(time.time() - start_time, 2)
        if token.is_cancelled():
            self._log(
                logging.INFO,
                "Stream cancelled",
                log_ctx,
                reason=token.reason,
                chunks=chunk_count,
                elapsed_seconds=elapsed,
            )
            yield make_event("cancelled")
            return

        self._log(
            logging.INFO,
            "Stream completed",
            log_ctx,
            chunks=chunk_count,
            elapsed_seconds=elapsed,
        )
        yield make_event("success", usage=usage)

    def _build_messages(self, history: Sequence[MessageRecord], user_text: str) -> List[ChatMessage]:
        """把历史消息转换为请求上下文。

        只保留用户消息与成功结束的助手回答；思考过程不回传给模型。
        """

        context = [
            ChatMessage(role=m.role, content=m.content)
            for m in history
            if m.role == "user" or (m.status == "success" and m.content)
        ]
        if len(context) > self._max_context:
            context = context[-self._max_context:]
        context.append(ChatMessage(role="user", content=user_text))
        return context

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
