"""对外 API 服务模块。

提供简化的函数接口供渲染层调用：输入框（send_text / cancel / toggle_reasoning）、
会话列表（list_conversations / select / new_conversation）与消息列表（get_messages）。
"""

from typing import Any, Dict, List, Optional

from chat_core.agents.chat_session import ChatSession, RequestHandle, SessionListener
from chat_core.config.settings import settings
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers import create_provider


_session: Optional[ChatSession] = None


def get_default_session(listener: Optional[SessionListener] = None) -> ChatSession:
    """获取默认的 ChatSession 实例（单例）。

    首次调用时创建 Provider，缺少 API 密钥等配置会在这里直接抛出 ConfigError。
    会话已存在时传入的 listener 会替换原有的钩子。
    """
    global _session
    if _session is None:
        _session = ChatSession(
            provider_client=create_provider(),
            listener=listener,
            cfg=settings,
        )
    elif listener is not None:
        _session.set_listener(listener)
    return _session


def reset_default_session() -> None:
    """关闭并丢弃默认会话。"""
    global _session
    if _session is not None:
        _session.close()
    _session = None


def send_text(text: str) -> Dict[str, Any]:
    """向当前会话发送消息。

    Returns:
        包含会话ID、用户消息ID、助手消息ID与所用模型的字典
    """
    session = get_default_session()
    try:
        handle: RequestHandle = session.send(text)
    except Exception as e:
        logger.error(f"Send failed: {e}", extra={"extra": {
            "conversation_id": session.active_conversation_id,
            "error": str(e),
        }})
        raise
    return {
        "conversation_id": handle.conversation_id,
        "user_message_id": handle.user_message_id,
        "assistant_message_id": handle.message_id,
        "model": handle.model.id,
    }


def cancel() -> bool:
    """停止当前会话正在进行的回答。"""
    return get_default_session().cancel()


def toggle_reasoning(flag: bool) -> str:
    """打开/关闭深度思考，返回之后请求将使用的模型。"""
    return get_default_session().toggle_reasoning(flag).id


def new_conversation() -> str:
    return get_default_session().new_conversation()


def select(conversation_id: str) -> None:
    get_default_session().switch_conversation(conversation_id)


def delete_conversation(conversation_id: str) -> None:
    """删除会话，进行中的请求会被取消。"""
    get_default_session().delete_conversation(conversation_id)


def list_conversations() -> List[Dict[str, Any]]:
    """列出所有会话（最新的在前）。

    Returns:
        会话列表，每项包含 id, title, state
    """
    return [
        {"id": item.id, "title": item.title, "state": item.state}
        for item in get_default_session().conversations()
    ]


def get_messages() -> List[Dict[str, Any]]:
    """获取当前会话的消息列表。"""
    return [
        {
            "id": m.id,
            "role": m.role,
            "content": m.content,
            "reasoning_content": m.reasoning_content,
            "status": m.status,
        }
        for m in get_default_session().messages()
    ]
