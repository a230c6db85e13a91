from chat_core.domain.models import ChatMessage, ChatStreamChunk, ChatDelta, ChatStreamChoice
from chat_core.domain.conversation import Conversation, MessageRecord, MessageView
from datetime import datetime, timezone


def test_models_exist():
    cm = ChatMessage(role="user", content="hi")
    assert cm.role == "user"
    now = datetime.now(timezone.utc)
    conv = Conversation(id="c1", title="t", created_at=now, seq=1)
    assert conv.id == "c1"
    mr = MessageRecord(id="m1", conversation_id="c1", role="assistant", content="x", status="streaming", created_at=now)
    assert mr.reasoning_content == ""
    assert not mr.is_terminal
    view = MessageView.from_record(mr)
    assert (view.id, view.role, view.content, view.status) == ("m1", "assistant", "x", "streaming")


def test_chunk_delta_defaults_to_empty():
    chunk = ChatStreamChunk(provider="p", model="m")
    assert chunk.delta == ChatDelta()
    chunk = ChatStreamChunk(
        provider="p",
        model="m",
        choices=[ChatStreamChoice(index=0, delta=ChatDelta(content="a", reasoning_content="r"))],
    )
    assert chunk.delta.content == "a"
    assert chunk.delta.reasoning_content == "r"
