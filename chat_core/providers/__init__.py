"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供具体实现 (deepseek_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ConfigError
from chat_core.providers.base import ProviderClient
from chat_core.providers.deepseek_client import DeepSeekClient


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "deepseek")).lower()
    if provider_name == "deepseek":
        return DeepSeekClient(settings)
    raise ConfigError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_name!r}")
