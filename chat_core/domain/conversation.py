from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol


MessageRole = Literal["user", "assistant"]
MessageStatus = Literal["local", "streaming", "success", "error", "cancelled"]
ConversationState = Literal["idle", "sending", "streaming"]

TERMINAL_STATUSES = frozenset({"success", "error", "cancelled"})


@dataclass
class Conversation:
    id: str
    title: str
    created_at: datetime
    seq: int


@dataclass(frozen=True)
class MessageRecord:
    """会话中的一条消息。

    user 消息创建即为 local 且不再变化；assistant 消息从 streaming 开始，
    最终进入 success/error/cancelled 之一，进入终态后不可再修改。
    """

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    status: MessageStatus
    created_at: datetime
    reasoning_content: str = ""
    model: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class MessageView:
    """交给渲染层的只读消息记录。"""

    id: str
    role: MessageRole
    content: str
    reasoning_content: str
    status: MessageStatus
    model: Optional[str] = None

    @classmethod
    def from_record(cls, record: MessageRecord) -> "MessageView":
        return cls(
            id=record.id,
            role=record.role,
            content=record.content,
            reasoning_content=record.reasoning_content,
            status=record.status,
            model=record.model,
        )


@dataclass(frozen=True)
class ConversationItem:
    """交给会话列表的只读条目。"""

    id: str
    title: str
    state: ConversationState = "idle"


class ConversationStore(Protocol):
    @property
    def active_id(self) -> Optional[str]:
        ...

    def create_conversation(self, title: str) -> str:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self) -> List[Conversation]:
        ...

    def switch_active(self, conversation_id: Optional[str]) -> None:
        ...

    def set_title(self, conversation_id: str, title: str) -> None:
        ...

    def append_message(self, conversation_id: str, message: MessageRecord) -> None:
        ...

    def update_message(self, conversation_id: str, message_id: str, **patch: Any) -> bool:
        ...

    def get_message(self, conversation_id: str, message_id: str) -> Optional[MessageRecord]:
        ...

    def messages_of(self, conversation_id: str) -> List[MessageRecord]:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...
