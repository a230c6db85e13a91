"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatStreamChunk / ModelConfig 模型。
- conversation: 会话与消息记录、渲染视图以及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
