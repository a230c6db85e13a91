"""聊天会话门面。

ChatSession 组合 ModelSelector、ConversationStore、ChatAgent 与 CancellationToken，
对渲染层暴露 send / cancel / switch_conversation / new_conversation 等操作。

每个会话有独立的状态机：idle -> sending -> streaming -> idle。
Agent 事件总是按 conversation_id 写回对应会话；只有"当前会话"的变化才通知渲染层，
后台会话继续流式写入，切回来时即可看到它达到的状态。
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
from uuid import uuid4

from chat_core.agents.cancellation import CancellationToken
from chat_core.agents.chat_agent import AgentEvent, ChatAgent
from chat_core.agents.model_selector import ModelSelector
from chat_core.config.settings import settings
from chat_core.domain.conversation import (
    ConversationItem,
    ConversationState,
    ConversationStore,
    MessageRecord,
    MessageView,
)
from chat_core.domain.exceptions import ConfigError, ConversationBusyError, ValidationError
from chat_core.domain.models import ModelConfig
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.memory_store import InMemoryConversationStore
from chat_core.providers.base import ProviderClient


Runner = Callable[[Callable[[], None]], None]


def thread_runner(job: Callable[[], None]) -> None:
    """默认执行器：每个请求一个后台线程。"""

    threading.Thread(target=job, name="chat-request", daemon=True).start()


def inline_runner(job: Callable[[], None]) -> None:
    """同步执行器：在调用线程里跑完整个请求，主要用于测试与脚本。"""

    job()


class SessionListener(Protocol):
    """渲染层钩子。

    回调可能来自请求线程，需要刷新 UI 的实现应自行切回 UI 线程。
    """

    def on_messages_changed(self, conversation_id: str, messages: Sequence[MessageView]) -> None:
        ...

    def on_conversations_changed(self, items: Sequence[ConversationItem]) -> None:
        ...

    def on_notification(self, level: str, text: str) -> None:
        ...


class NullListener:
    def on_messages_changed(self, conversation_id: str, messages: Sequence[MessageView]) -> None:
        pass

    def on_conversations_changed(self, items: Sequence[ConversationItem]) -> None:
        pass

    def on_notification(self, level: str, text: str) -> None:
        pass


@dataclass
class RequestHandle:
    """一次 send 对应的请求句柄。

    令牌只绑定这一条助手消息与这一个会话；model 是发送时刻的快照。
    """

    conversation_id: str
    message_id: str
    user_message_id: str
    model: ModelConfig
    token: CancellationToken
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """等待终态事件写回存储，返回是否在超时前完成。"""

        return self._done.wait(timeout)


class ChatSession:
    def __init__(
        self,
        provider_client: ProviderClient,
        store: Optional[ConversationStore] = None,
        selector: Optional[ModelSelector] = None,
        listener: Optional[SessionListener] = None,
        runner: Optional[Runner] = None,
        cfg=settings,
    ):
        if provider_client is None:
            raise ConfigError(code="MISSING_PROVIDER", message="provider_client is required")
        self._cfg = cfg
        self._store = store if store is not None else InMemoryConversationStore()
        self._selector = selector or ModelSelector.from_settings(cfg)
        self._agent = ChatAgent(
            provider_client,
            temperature=getattr(cfg, "temperature", None),
            max_context_messages=getattr(cfg, "max_context_messages", None),
        )
        self._listener: SessionListener = listener or NullListener()
        self._runner = runner or thread_runner
        self._lock = threading.RLock()
        self._states: Dict[str, ConversationState] = {}
        self._requests: Dict[str, RequestHandle] = {}

    # ---- 查询 ----

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self._store.active_id

    @property
    def reasoning_enabled(self) -> bool:
        return self._selector.reasoning_enabled

    def state_of(self, conversation_id: str) -> ConversationState:
        with self._lock:
            return self._states.get(conversation_id, "idle")

    def messages(self) -> List[MessageView]:
        """当前会话的只读消息列表；没有当前会话时为空。"""

        with self._lock:
            cid = self._store.active_id
            if cid is None:
                return []
            return self._views(cid)

    def conversations(self) -> List[ConversationItem]:
        with self._lock:
            return [
                ConversationItem(id=c.id, title=c.title, state=self._states.get(c.id, "idle"))
                for c in self._store.list_conversations()
            ]

    # ---- 操作 ----

    def set_listener(self, listener: Optional[SessionListener]) -> None:
        """替换渲染层钩子；None 表示不再通知。"""

        self._listener = listener or NullListener()

    def toggle_reasoning(self, flag: bool) -> ModelConfig:
        """切换深度思考，只影响之后的 send。"""

        model = self._selector.set_reasoning_enabled(flag)
        self._log(logging.INFO, "Model switched", model=model.id)
        return model

    def new_conversation(self) -> str:
        """开启新对话；当前会话还没有消息时直接复用它。"""

        with self._lock:
            active = self._store.active_id
            if active is not None and not self._store.messages_of(active):
                return active
            cid = self._store.create_conversation("")
        self._emit_conversations()
        self._emit_messages(cid)
        return cid

    def switch_conversation(self, conversation_id: str) -> None:
        """切换当前会话。不会取消任何进行中的请求。"""

        self._store.switch_active(conversation_id)
        self._log(logging.INFO, "Switched conversation", conversation_id=conversation_id)
        self._emit_conversations()
        self._emit_messages(conversation_id)

    def send(self, text: str) -> RequestHandle:
        """向当前会话发送一条消息并开始流式请求。

        没有当前会话时以消息内容为标题新建一个。目标会话不是 idle 时抛出
        ConversationBusyError，同一会话不支持并发请求。
        """

        if not text or not text.strip():
            raise ValidationError(code="EMPTY_MESSAGE", message="message text is empty")
        # 模型在发送时快照一次，之后切换开关不影响本次请求
        model = self._selector.current_model()

        with self._lock:
            cid = self._store.active_id
            if cid is None:
                cid = self._store.create_conversation(self._make_title(text))
            elif self._states.get(cid, "idle") != "idle":
                raise ConversationBusyError(
                    code="CONVERSATION_BUSY",
                    message=f"conversation {cid} already has a request in flight",
                    http_status=409,
                )
            elif not self._store.get_conversation(cid).title:
                self._store.set_title(cid, self._make_title(text))

            history = self._store.messages_of(cid)
            previous = self._requests.get(cid)
            if previous is not None:
                previous.token.cancel("superseded")

            now = datetime.now(timezone.utc)
            user_rec = MessageRecord(
                id=f"m-{uuid4().hex}",
                conversation_id=cid,
                role="user",
                content=text,
                status="local",
                created_at=now,
            )
            assistant_rec = MessageRecord(
                id=f"m-{uuid4().hex}",
                conversation_id=cid,
                role="assistant",
                content="",
                status="streaming",
                created_at=now,
                model=model.id,
            )
            self._store.append_message(cid, user_rec)
            self._store.append_message(cid, assistant_rec)

            handle = RequestHandle(
                conversation_id=cid,
                message_id=assistant_rec.id,
                user_message_id=user_rec.id,
                model=model,
                token=CancellationToken(),
            )
            self._requests[cid] = handle
            self._states[cid] = "sending"

        self._log(
            logging.INFO,
            "Dispatching request",
            conversation_id=cid,
            message_id=handle.message_id,
            model=model.id,
            history=len(history),
        )
        self._emit_conversations()
        self._emit_messages(cid)
        self._runner(lambda: self._pump(handle, text, history))
        return handle

    def cancel(self, conversation_id: Optional[str] = None, reason: str = "停止") -> bool:
        """取消指定（默认当前）会话的进行中请求。

        返回是否真正触发了取消；状态在 Agent 确认 cancelled 后回到 idle。
        """

        with self._lock:
            cid = conversation_id or self._store.active_id
            if cid is None or self._states.get(cid, "idle") == "idle":
                return False
            handle = self._requests.get(cid)
            if handle is None:
                return False
            triggered = handle.token.cancel(reason)
        if triggered:
            self._log(logging.INFO, "Cancel requested", conversation_id=cid, message_id=handle.message_id)
        return triggered

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            handle = self._requests.pop(conversation_id, None)
            if handle is not None:
                handle.token.cancel("conversation deleted")
            self._store.delete_conversation(conversation_id)
            self._states.pop(conversation_id, None)
        self._emit_conversations()

    def close(self) -> None:
        """取消所有进行中的请求。"""

        with self._lock:
            handles = list(self._requests.values())
        for handle in handles:
            handle.token.cancel("session closed")

    # ---- 事件写回 ----

    def _pump(self, handle: RequestHandle, text: str, history: List[MessageRecord]) -> None:
        cid = handle.conversation_id
        failure: Optional[Exception] = None
        forced = False
        try:
            events = self._agent.run(cid, handle.message_id, text, history, handle.model, handle.token)
            for event in events:
                self._apply(handle, event)
        except Exception as e:
            logger.exception(
                "Applying agent event failed",
                extra={"extra": {"conversation_id": cid, "message_id": handle.message_id}},
            )
            failure = e
        finally:
            with self._lock:
                record = self._store.get_message(cid, handle.message_id) if cid in self._states else None
                if record is not None and not record.is_terminal:
                    meta = dict(record.meta)
                    meta["error_code"] = "UNEXPECTED_ERROR"
                    meta["error"] = str(failure) if failure is not None else "stream ended without a result"
                    forced = self._store.update_message(cid, handle.message_id, status="error", meta=meta)
                if self._requests.get(cid) is handle:
                    del self._requests[cid]
                    self._states[cid] = "idle"
            handle._done.set()

        if forced:
            self._emit_conversations()
            self._listener.on_notification("error", str(failure) if failure is not None else "请求异常结束")

    def _apply(self, handle: RequestHandle, event: AgentEvent) -> None:
        cid = event.conversation_id
        notification = None
        with self._lock:
            current = self._store.get_message(cid, event.message_id)
            if current is None:
                # 会话已被删除
                return
            if event.kind == "progress":
                if handle.token.is_cancelled():
                    return
                changed = self._store.update_message(
                    cid,
                    event.message_id,
                    content=event.content,
                    reasoning_content=event.reasoning_content,
                )
                if changed and self._states.get(cid) == "sending":
                    self._states[cid] = "streaming"
            elif event.kind == "success":
                meta = dict(current.meta)
                if event.usage:
                    meta["usage"] = event.usage
                changed = self._store.update_message(
                    cid,
                    event.message_id,
                    content=event.content,
                    reasoning_content=event.reasoning_content,
                    status="success",
                    meta=meta,
                )
            elif event.kind == "error":
                meta = dict(current.meta)
                if event.error is not None:
                    meta["error_code"] = event.error.code
                    meta["error"] = event.error.message
                changed = self._store.update_message(cid, event.message_id, status="error", meta=meta)
                if event.error is not None:
                    notification = ("error", event.error.message)
            else:
                # 取消只改状态，保留已写入的部分内容
                meta = dict(current.meta)
                meta["cancel_reason"] = handle.token.reason
                changed = self._store.update_message(cid, event.message_id, status="cancelled", meta=meta)
                if getattr(self._cfg, "notify_on_cancel", False):
                    notification = ("info", "已停止")

            if event.is_terminal and self._requests.get(cid) is handle:
                del self._requests[cid]
                self._states[cid] = "idle"
            views = self._views(cid) if changed and self._store.active_id == cid else None

        if views is not None:
            self._listener.on_messages_changed(cid, views)
        if event.is_terminal:
            self._log(
                logging.INFO,
                "Request finished",
                conversation_id=cid,
                message_id=event.message_id,
                status=event.kind,
            )
            self._emit_conversations()
        if notification is not None:
            self._listener.on_notification(*notification)

    # ---- 辅助方法 ----

    def _views(self, conversation_id: str) -> List[MessageView]:
        return [MessageView.from_record(m) for m in self._store.messages_of(conversation_id)]

    def _emit_messages(self, conversation_id: str) -> None:
        with self._lock:
            if self._store.active_id != conversation_id:
                return
            views = self._views(conversation_id)
        self._listener.on_messages_changed(conversation_id, views)

    def _emit_conversations(self) -> None:
        self._listener.on_conversations_changed(self.conversations())

    def _make_title(self, text: str) -> str:
        limit = getattr(self._cfg, "title_max_length", 30)
        first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
        return first_line[:limit]

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        logger.log(level, message, extra={"extra": fields})
