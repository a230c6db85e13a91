from datetime import datetime, timezone

from chat_core.agents.aggregator import REASONING_END_MARKER
from chat_core.agents.cancellation import CancellationToken
from chat_core.agents.chat_agent import ChatAgent
from chat_core.domain.conversation import MessageRecord
from chat_core.domain.exceptions import NetworkError
from chat_core.domain.models import (
    ChatDelta,
    ChatStreamChoice,
    ChatStreamChunk,
    ChatUsage,
    ModelConfig,
)


CHAT = ModelConfig(id="deepseek-chat")
REASONER = ModelConfig(id="deepseek-reasoner", supports_reasoning_trace=True)


class FakeProvider:
    name = "fake"

    def __init__(self, deltas, fail_after=None, usage=None):
        self.deltas = list(deltas)
        self.fail_after = fail_after
        self.usage = usage
        self.requests = []
        self.yielded = 0
        self.closed = False

    def chat_stream(self, req, cancel_signal=None):
        self.requests.append(req)
        try:
            for i, delta in enumerate(self.deltas):
                if self.fail_after is not None and i == self.fail_after:
                    raise NetworkError(code="NETWORK_ERROR", message="connection reset")
                last = i == len(self.deltas) - 1
                self.yielded += 1
                yield ChatStreamChunk(
                    provider="fake",
                    model=req.model.id,
                    choices=[ChatStreamChoice(index=0, delta=delta)],
                    usage=self.usage if last else None,
                )
        finally:
            self.closed = True


def _run(agent, token=None, model=CHAT, history=()):
    return list(agent.run("c1", "m1", "hello", list(history), model, token or CancellationToken()))


def test_run_success_events():
    provider = FakeProvider(
        [ChatDelta(content="hel"), ChatDelta(content="lo")],
        usage=ChatUsage(prompt_tokens=1, completion_tokens=2, total_tokens=3),
    )
    events = _run(ChatAgent(provider))
    assert [e.kind for e in events] == ["progress", "progress", "success"]
    assert [e.content for e in events] == ["hel", "hello", "hello"]
    final = events[-1]
    assert final.is_terminal
    assert final.usage == {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}
    assert final.model == "deepseek-chat"
    assert provider.requests[0].messages[-1].content == "hello"
    assert provider.closed


def test_run_reasoning_events():
    provider = FakeProvider(
        [
            ChatDelta(reasoning_content="thinking..."),
            ChatDelta(reasoning_content="more"),
            ChatDelta(content="42"),
        ]
    )
    events = _run(ChatAgent(provider), model=REASONER)
    final = events[-1]
    assert final.kind == "success"
    assert final.reasoning_content == "thinking...more" + REASONING_END_MARKER
    assert final.content == "42"


def test_run_cancel_mid_stream_stops_consuming():
    provider = FakeProvider([ChatDelta(content=str(i)) for i in range(10)])
    token = CancellationToken()
    agent = ChatAgent(provider)
    events = []
    for event in agent.run("c1", "m1", "hello", [], CHAT, token):
        events.append(event)
        if event.kind == "progress":
            token.cancel()
    assert [e.kind for e in events] == ["progress", "cancelled"]
    assert events[-1].content == "0"
    # 第二个 chunk 已被读出但不会生效，之后流被关闭
    assert provider.yielded == 2
    assert provider.closed


def test_run_cancelled_before_dispatch():
    provider = FakeProvider([ChatDelta(content="x")])
    token = CancellationToken()
    token.cancel()
    events = _run(ChatAgent(provider), token=token)
    assert [e.kind for e in events] == ["cancelled"]
    assert provider.requests == []


def test_run_network_error_keeps_partial_content():
    provider = FakeProvider([ChatDelta(content="a"), ChatDelta(content="b")], fail_after=1)
    events = _run(ChatAgent(provider))
    assert [e.kind for e in events] == ["progress", "error"]
    assert events[-1].error.code == "NETWORK_ERROR"
    assert events[-1].content == "a"


def test_run_unexpected_error_becomes_error_event():
    class Broken:
        name = "broken"

        def chat_stream(self, req, cancel_signal=None):
            raise RuntimeError("boom")

    events = _run(ChatAgent(Broken()))
    assert [e.kind for e in events] == ["error"]
    assert events[0].error.code == "UNEXPECTED_ERROR"


def test_history_filtering_and_trimming():
    now = datetime.now(timezone.utc)

    def rec(mid, role, content, status):
        return MessageRecord(id=mid, conversation_id="c1", role=role, content=content, status=status, created_at=now)

    history = [
        rec("1", "user", "q1", "local"),
        rec("2", "assistant", "a1", "success"),
        rec("3", "user", "q2", "local"),
        rec("4", "assistant", "partial", "cancelled"),
        rec("5", "user", "q3", "local"),
        rec("6", "assistant", "", "error"),
    ]
    provider = FakeProvider([ChatDelta(content="ok")])
    _run(ChatAgent(provider, max_context_messages=3), history=history)
    sent = [(m.role, m.content) for m in provider.requests[0].messages]
    assert sent == [("assistant", "a1"), ("user", "q2"), ("user", "q3"), ("user", "hello")]
