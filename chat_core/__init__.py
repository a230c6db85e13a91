"""Chat Core 顶层包。

该包提供流式对话会话引擎：配置加载、领域模型、Provider 适配、
流式聚合、取消令牌、模型选择、会话存储与会话门面。
"""

from chat_core.agents.chat_session import ChatSession, RequestHandle, SessionListener

__all__ = ["ChatSession", "RequestHandle", "SessionListener"]
