"""流式增量聚合。

把一串 ChatDelta 折叠为不断增长的 (reasoning_content, content) 二元组：

1. reasoning 增量非空时追加到 reasoning_content；
2. 否则，若这是思考模型的第一段回答增量且已有思考内容，在 reasoning_content
   末尾追加一次"思考结束"标记（每条消息最多一次）；
3. 回答增量非空时追加到 content。

结果只取决于增量序列与模型能力，可以对录制下来的 chunk 日志重放。
"""

from dataclasses import dataclass
from typing import Iterable, List

from chat_core.domain.models import ChatDelta


REASONING_END_MARKER = "\n==========  思考结束  ==========\n\n\n"


@dataclass(frozen=True)
class AggregateState:
    reasoning_content: str = ""
    content: str = ""


class StreamAggregator:
    def __init__(self, supports_reasoning: bool, marker: str = REASONING_END_MARKER):
        self._supports_reasoning = supports_reasoning
        self._marker = marker
        self._reasoning: List[str] = []
        self._content: List[str] = []
        self._marker_added = False

    def feed(self, delta: ChatDelta) -> AggregateState:
        if delta.reasoning_content:
            self._reasoning.append(delta.reasoning_content)
        elif (
            delta.content
            and self._supports_reasoning
            and self._reasoning
            and not self._marker_added
        ):
            self._reasoning.append(self._marker)
            self._marker_added = True
        if delta.content:
            self._content.append(delta.content)
        return self.state

    @property
    def state(self) -> AggregateState:
        return AggregateState(
            reasoning_content="".join(self._reasoning),
            content="".join(self._content),
        )


def aggregate(deltas: Iterable[ChatDelta], supports_reasoning: bool) -> AggregateState:
    """对完整的增量序列求最终聚合结果。"""

    agg = StreamAggregator(supports_reasoning)
    for delta in deltas:
        agg.feed(delta)
    return agg.state
