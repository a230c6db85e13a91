import threading
from dataclasses import replace

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ConfigError
from chat_core.domain.models import ModelConfig
from chat_core.providers.registry import get_provider_config


class ModelSelector:
    """决定下一次请求使用哪个模型。

    只保存"当前"模型；已发出的请求在 send 时快照 current_model()，
    之后切换深度思考开关不会影响它。
    """

    def __init__(self, base_model: ModelConfig, reasoning_model: ModelConfig):
        self._base = base_model
        self._reasoning = reasoning_model
        self._lock = threading.Lock()
        self._enabled = False

    @classmethod
    def from_settings(cls, cfg=settings) -> "ModelSelector":
        """按 Provider 默认能力与配置里的模型 ID 构造。"""

        try:
            provider_cfg = get_provider_config(cfg.default_provider)
        except KeyError as e:
            raise ConfigError(code="UNKNOWN_PROVIDER", message=str(e))
        chat_model = getattr(cfg, "chat_model", None)
        reasoner_model = getattr(cfg, "reasoner_model", None)
        if not chat_model or not reasoner_model:
            raise ConfigError(code="MISSING_MODEL", message="chat_model / reasoner_model not set")
        return cls(
            base_model=replace(provider_cfg.models["chat"], id=chat_model),
            reasoning_model=replace(provider_cfg.models["reasoner"], id=reasoner_model),
        )

    def set_reasoning_enabled(self, flag: bool) -> ModelConfig:
        with self._lock:
            self._enabled = bool(flag)
            return self._reasoning if self._enabled else self._base

    @property
    def reasoning_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def current_model(self) -> ModelConfig:
        with self._lock:
            return self._reasoning if self._enabled else self._base
