import itertools
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.domain.conversation import TERMINAL_STATUSES, Conversation, ConversationStore, MessageRecord
from chat_core.domain.exceptions import BusinessError, ConversationNotFoundError, ValidationError
from chat_core.infrastructure.logging.logger import logger


_PATCHABLE_FIELDS = frozenset({"content", "reasoning_content", "status", "model", "meta"})
_INITIAL_STATUS = {"user": "local", "assistant": "streaming"}
_PATCHABLE_STATUSES = frozenset({"streaming"}) | TERMINAL_STATUSES


def _detached(message: MessageRecord) -> MessageRecord:
    return replace(message, meta=dict(message.meta))


class InMemoryConversationStore(ConversationStore):
    """进程内的会话存储。

    所有读写都在同一把锁下完成，对同一条消息不会出现交错的半写入。
    消息按插入顺序保存，不会重排；终态消息拒绝任何修改。
    读写都以副本交换，调用方拿到的 meta 改动不会影响存储。
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._seq = itertools.count(1)
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[MessageRecord]] = {}
        self._active_id: Optional[str] = None

    @property
    def active_id(self) -> Optional[str]:
        with self._lock:
            return self._active_id

    def create_conversation(self, title: str) -> str:
        cid = f"c-{uuid4().hex}"
        with self._lock:
            self._conversations[cid] = Conversation(
                id=cid,
                title=title,
                created_at=datetime.now(timezone.utc),
                seq=next(self._seq),
            )
            self._messages[cid] = []
            self._active_id = cid
        logger.info("Created conversation", extra={"extra": {"conversation_id": cid}})
        return cid

    def get_conversation(self, conversation_id: str) -> Conversation:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None:
                raise ConversationNotFoundError(
                    code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404
                )
            return replace(conv)

    def list_conversations(self) -> List[Conversation]:
        """按创建顺序倒序返回（最新的在最前）。"""

        with self._lock:
            items = sorted(self._conversations.values(), key=lambda c: c.seq, reverse=True)
            return [replace(c) for c in items]

    def switch_active(self, conversation_id: Optional[str]) -> None:
        """切换当前会话；None 表示没有选中任何会话。不修改任何消息。"""

        with self._lock:
            if conversation_id is not None and conversation_id not in self._conversations:
                raise ConversationNotFoundError(
                    code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404
                )
            self._active_id = conversation_id

    def set_title(self, conversation_id: str, title: str) -> None:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None:
                raise ConversationNotFoundError(
                    code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404
                )
            conv.title = title

    def append_message(self, conversation_id: str, message: MessageRecord) -> None:
        if message.conversation_id != conversation_id:
            raise BusinessError(
                code="MESSAGE_OWNER_MISMATCH",
                message=f"{message.id} belongs to {message.conversation_id}",
            )
        expected = _INITIAL_STATUS.get(message.role)
        if expected is None or message.status != expected:
            raise ValidationError(
                code="INVALID_INITIAL_STATUS",
                message=f"{message.role} message must start as {expected}, got {message.status}",
            )
        with self._lock:
            msgs = self._messages.get(conversation_id)
            if msgs is None:
                raise ConversationNotFoundError(
                    code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404
                )
            if any(m.id == message.id for m in msgs):
                raise BusinessError(code="DUPLICATE_MESSAGE", message=message.id)
            msgs.append(_detached(message))

    def update_message(self, conversation_id: str, message_id: str, **patch: Any) -> bool:
        """按 patch 替换消息字段。

        以下情况不修改并返回 False：会话或消息不存在、消息不属于该会话、
        消息已是终态、消息是 user 消息、或 status 试图回到 local。
        未知字段或未知 status 直接抛出异常。
        """

        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise BusinessError(code="INVALID_PATCH", message=", ".join(sorted(unknown)))
        status = patch.get("status")
        if status is not None and status != "local" and status not in _PATCHABLE_STATUSES:
            raise ValidationError(code="INVALID_STATUS", message=str(status))
        if "meta" in patch:
            patch["meta"] = dict(patch["meta"])
        with self._lock:
            msgs = self._messages.get(conversation_id)
            if msgs is None:
                return False
            for idx, current in enumerate(msgs):
                if current.id != message_id:
                    continue
                if current.is_terminal or current.role == "user" or patch.get("status") == "local":
                    logger.info(
                        "Rejected message update",
                        extra={"extra": {
                            "conversation_id": conversation_id,
                            "message_id": message_id,
                            "status": current.status,
                        }},
                    )
                    return False
                msgs[idx] = replace(current, **patch)
                return True
            return False

    def get_message(self, conversation_id: str, message_id: str) -> Optional[MessageRecord]:
        with self._lock:
            for m in self._messages.get(conversation_id, []):
                if m.id == message_id:
                    return _detached(m)
            return None

    def messages_of(self, conversation_id: str) -> List[MessageRecord]:
        with self._lock:
            msgs = self._messages.get(conversation_id)
            if msgs is None:
                raise ConversationNotFoundError(
                    code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404
                )
            return [_detached(m) for m in msgs]

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            if conversation_id not in self._conversations:
                raise ConversationNotFoundError(
                    code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404
                )
            del self._conversations[conversation_id]
            del self._messages[conversation_id]
            if self._active_id == conversation_id:
                self._active_id = None
        logger.info("Deleted conversation", extra={"extra": {"conversation_id": conversation_id}})
