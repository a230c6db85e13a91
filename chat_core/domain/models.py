"""统一的对话请求与流式结果数据模型。

本模块定义了 Agent 与 Provider 之间共享的标准数据结构：

- ChatMessage: 发给 Provider 的一条上下文消息（user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整流式请求。
- ChatStreamChunk: 从 Provider 解析后的单个增量。
- ModelConfig: 模型标识与能力（是否输出思考过程）。

Provider 适配器只依赖这些模型，并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# 发给 Provider 的消息角色
Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ModelConfig:
    """单个模型的配置。

    - id: 直接写入请求体 model 字段的模型标识，如 "deepseek-chat"。
    - supports_reasoning_trace: 模型是否会在回答前流式输出思考过程。
    - max_tokens: 可选的输出上限，None 表示交给服务端默认值。
    """

    id: str
    supports_reasoning_trace: bool = False
    max_tokens: Optional[int] = None


@dataclass
class ChatMessage:
    """一条上下文消息。"""

    role: Role
    content: str


@dataclass
class ChatRequest:
    """一次完整的流式聊天请求。

    model 是发送时刻快照下来的 ModelConfig，请求存活期间不会再变。
    """

    provider: str
    model: ModelConfig
    messages: List[ChatMessage]
    temperature: Optional[float] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    def as_meta(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ChatDelta:
    """单个 choice 的增量内容。

    - content: 回答文本增量。
    - reasoning_content: 思考过程增量（wire 字段 reasoning_content 或 reasoning）。
    """

    content: str = ""
    reasoning_content: str = ""


@dataclass
class ChatStreamChoice:
    """流式返回中的单个候选增量。"""

    index: int
    delta: ChatDelta
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """流式对话的一次增量结果。

    usage 通常只出现在最后一个 chunk 上；也可能出现没有 choices 的纯 usage chunk。
    """

    provider: str
    model: str
    choices: List[ChatStreamChoice] = field(default_factory=list)
    usage: Optional[ChatUsage] = None
    raw: Optional[Dict[str, Any]] = None

    @property
    def delta(self) -> ChatDelta:
        """首个 choice 的增量，没有 choice 时返回空增量。"""

        if not self.choices:
            return ChatDelta()
        return self.choices[0].delta
