"""DeepSeek（OpenAI 兼容）Provider 适配器。

接口风格与 OpenAI 一致，使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>
- 流式: 请求体 stream=true，响应为 SSE 行 `data: {json}`，以 `data: [DONE]` 或连接关闭结束。

思考模型会在 delta.reasoning_content 中输出思考过程，部分兼容服务使用 delta.reasoning，
两者同时存在且非空时以 reasoning_content 为准。
"""

import json
from typing import Any, Dict, Iterator, List, Optional

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import (
    ApiError,
    ConfigError,
    NetworkError,
    ProtocolError,
    RateLimitError,
)
from chat_core.domain.models import (
    ChatDelta,
    ChatMessage,
    ChatRequest,
    ChatStreamChoice,
    ChatStreamChunk,
    ChatUsage,
)
from chat_core.providers.base import CancelSignal
from chat_core.providers.registry import DEEPSEEK_CONFIG


class DeepSeekClient:
    """DeepSeek Provider 客户端实现。

    构造时即校验 API 密钥与 base_url，缺失时抛出 ConfigError，
    避免把配置问题拖到流式请求中途才暴露。
    """

    name = "deepseek"

    def __init__(self, cfg=settings):
        self._settings = cfg
        if not getattr(cfg, "deepseek_api_key", None):
            raise ConfigError(code="MISSING_API_KEY", message="DEEPSEEK_API_KEY not set")
        base = getattr(cfg, "deepseek_base_url", None) or DEEPSEEK_CONFIG.base_url
        if not base:
            raise ConfigError(code="MISSING_BASE_URL", message="DEEPSEEK_BASE_URL not set")
        self._base_url = base.rstrip("/")

    def chat_stream(
        self, req: ChatRequest, cancel_signal: Optional[CancelSignal] = None
    ) -> Iterator[ChatStreamChunk]:
        """执行一次流式对话调用，逐步 yield ChatStreamChunk。

        cancel_signal 在每读取一行前检查一次；被取消后直接返回，
        退出 with 块时关闭 HTTP 响应与连接。调用方 close() 本生成器效果相同。
        """

        payload = self._build_payload(req)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{self._base_url}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._settings.deepseek_api_key}",
                        "Content-Type": "application/json",
                        "Accept": "text/event-stream",
                    },
                ) as resp:
                    self._raise_for_status(resp)
                    for line in resp.iter_lines():
                        if cancel_signal is not None and cancel_signal.is_cancelled():
                            return
                        data_str = self._sse_data(line)
                        if data_str is None:
                            continue
                        yield self._parse_stream_chunk(self._decode(data_str), req)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": req.model.id,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "stream": True,
        }
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.model.max_tokens:
            payload["max_tokens"] = req.model.max_tokens
        return payload

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, str]:
        return {"role": message.role, "content": message.content}

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="DeepSeek rate limit", http_status=429)
        if resp.status_code >= 400:
            resp.read()
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)

    @staticmethod
    def _sse_data(line: str) -> Optional[str]:
        """取出一行 SSE 的 data 部分；空行、注释（keep-alive）与 [DONE] 返回 None。"""

        if not line or line.startswith(":"):
            return None
        data_str = line[5:] if line.startswith("data:") else line
        data_str = data_str.strip()
        if not data_str or data_str == "[DONE]":
            return None
        return data_str

    @staticmethod
    def _decode(data_str: str) -> Dict[str, Any]:
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError as e:
            raise ProtocolError(code="MALFORMED_CHUNK", message=f"Invalid JSON chunk: {e}")
        if not isinstance(data, dict):
            raise ProtocolError(code="MALFORMED_CHUNK", message="Chunk is not a JSON object")
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ApiError(code="API_ERROR", message=message or "stream error", http_status=502)
        return data

    def _parse_stream_chunk(self, data: Dict[str, Any], req: ChatRequest) -> ChatStreamChunk:
        """解析流式响应中的单条增量。"""

        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise ProtocolError(code="MALFORMED_CHUNK", message="choices is not a list")
        choices: List[ChatStreamChoice] = []
        for i, ch in enumerate(raw_choices):
            if not isinstance(ch, dict):
                raise ProtocolError(code="MALFORMED_CHUNK", message="choice is not an object")
            choices.append(
                ChatStreamChoice(
                    index=ch.get("index", i),
                    delta=self._parse_delta(ch.get("delta") or {}),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatStreamChunk(
            provider=self.name,
            model=data.get("model") or req.model.id,
            choices=choices,
            usage=usage,
            raw=data,
        )

    @staticmethod
    def _parse_delta(payload: Any) -> ChatDelta:
        if not isinstance(payload, dict):
            raise ProtocolError(code="MALFORMED_CHUNK", message="delta is not an object")
        fields = {}
        for key in ("content", "reasoning_content", "reasoning"):
            value = payload.get(key)
            if value is not None and not isinstance(value, str):
                raise ProtocolError(code="MALFORMED_CHUNK", message=f"delta.{key} is not a string")
            fields[key] = value or ""
        return ChatDelta(
            content=fields["content"],
            reasoning_content=fields["reasoning_content"] or fields["reasoning"],
        )
