from datetime import datetime, timezone

import pytest

from chat_core.domain.conversation import MessageRecord
from chat_core.domain.exceptions import BusinessError, ConversationNotFoundError, ValidationError
from chat_core.infrastructure.storage.memory_store import InMemoryConversationStore


def _msg(mid, cid, role="assistant", status="streaming", content=""):
    return MessageRecord(
        id=mid,
        conversation_id=cid,
        role=role,
        content=content,
        status=status,
        created_at=datetime.now(timezone.utc),
    )


def test_create_and_order_conversations():
    store = InMemoryConversationStore()
    assert store.active_id is None
    c1 = store.create_conversation("first")
    c2 = store.create_conversation("second")
    assert store.active_id == c2
    assert [c.id for c in store.list_conversations()] == [c2, c1]
    assert store.get_conversation(c1).title == "first"


def test_switch_active_keeps_messages():
    store = InMemoryConversationStore()
    c1 = store.create_conversation("a")
    store.append_message(c1, _msg("m1", c1, role="user", status="local", content="hi"))
    c2 = store.create_conversation("b")
    store.switch_active(c1)
    assert store.active_id == c1
    assert [m.id for m in store.messages_of(c1)] == ["m1"]
    assert store.messages_of(c2) == []
    with pytest.raises(ConversationNotFoundError):
        store.switch_active("missing")


def test_messages_keep_insertion_order():
    store = InMemoryConversationStore()
    cid = store.create_conversation("t")
    for i in range(5):
        store.append_message(cid, _msg(f"m{i}", cid))
    store.update_message(cid, "m2", content="x")
    assert [m.id for m in store.messages_of(cid)] == ["m0", "m1", "m2", "m3", "m4"]


def test_update_message_rules():
    store = InMemoryConversationStore()
    cid = store.create_conversation("t")
    other = store.create_conversation("o")
    store.append_message(cid, _msg("u1", cid, role="user", status="local", content="hi"))
    store.append_message(cid, _msg("a1", cid))

    assert store.update_message(cid, "a1", content="he", reasoning_content="r") is True
    # 错误的所属会话
    assert store.update_message(other, "a1", content="nope") is False
    # user 消息不会迁移
    assert store.update_message(cid, "u1", status="success") is False
    assert store.update_message(cid, "a1", status="local") is False
    assert store.update_message(cid, "a1", content="hello", status="success") is True
    # 终态不可修改
    assert store.update_message(cid, "a1", content="late") is False
    assert store.update_message(cid, "a1", status="cancelled") is False
    assert store.update_message(cid, "missing", content="x") is False

    record = store.get_message(cid, "a1")
    assert record.content == "hello"
    assert record.reasoning_content == "r"
    assert record.status == "success"
    with pytest.raises(BusinessError):
        store.update_message(cid, "a1", role="user")


def test_append_message_validation():
    store = InMemoryConversationStore()
    cid = store.create_conversation("t")
    with pytest.raises(BusinessError) as exc:
        store.append_message(cid, _msg("m1", "someone-else"))
    assert exc.value.code == "MESSAGE_OWNER_MISMATCH"
    store.append_message(cid, _msg("m1", cid))
    with pytest.raises(BusinessError):
        store.append_message(cid, _msg("m1", cid))


def test_delete_conversation():
    store = InMemoryConversationStore()
    c1 = store.create_conversation("t")
    store.delete_conversation(c1)
    assert store.active_id is None
    assert store.list_conversations() == []
    assert store.update_message(c1, "m", content="x") is False
    with pytest.raises(ConversationNotFoundError):
        store.messages_of(c1)
    with pytest.raises(ConversationNotFoundError):
        store.delete_conversation(c1)


def test_set_title():
    store = InMemoryConversationStore()
    cid = store.create_conversation("")
    store.set_title(cid, "named")
    assert store.get_conversation(cid).title == "named"


def test_append_requires_initial_status():
    store = InMemoryConversationStore()
    cid = store.create_conversation("t")
    with pytest.raises(ValidationError) as exc:
        store.append_message(cid, _msg("u1", cid, role="user", status="streaming"))
    assert exc.value.code == "INVALID_INITIAL_STATUS"
    with pytest.raises(ValidationError):
        store.append_message(cid, _msg("a1", cid, status="success"))
    assert store.messages_of(cid) == []


def test_update_rejects_unknown_status():
    store = InMemoryConversationStore()
    cid = store.create_conversation("t")
    store.append_message(cid, _msg("a1", cid))
    with pytest.raises(ValidationError) as exc:
        store.update_message(cid, "a1", status="bogus")
    assert exc.value.code == "INVALID_STATUS"
    assert store.get_message(cid, "a1").status == "streaming"
    assert store.update_message(cid, "a1", status="cancelled") is True


def test_returned_records_do_not_alias_stored_meta():
    store = InMemoryConversationStore()
    cid = store.create_conversation("t")
    store.append_message(cid, _msg("a1", cid))
    meta = {"k": 1}
    store.update_message(cid, "a1", status="success", meta=meta)
    meta["k"] = 2
    store.get_message(cid, "a1").meta["k"] = 999
    store.messages_of(cid)[0].meta["k"] = 999
    assert store.get_message(cid, "a1").meta == {"k": 1}
