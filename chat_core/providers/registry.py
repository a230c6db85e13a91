"""Provider 与模型配置。

每个 Provider 有一个默认 base_url 以及两个模型槽位：

- chat: 基础对话模型，不输出思考过程。
- reasoner: 深度思考模型，会在回答前流式输出 reasoning_content。

实际使用的模型 ID 可以被配置覆盖（见 settings.chat_model / settings.reasoner_model），
这里只提供默认值与能力标记。"""

from dataclasses import dataclass
from typing import Dict, Mapping

from chat_core.domain.models import ModelConfig


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


DEEPSEEK_CONFIG = ProviderConfig(
    name="deepseek",
    base_url="https://api.deepseek.com",
    models={
        "chat": ModelConfig(id="deepseek-chat", supports_reasoning_trace=False),
        "reasoner": ModelConfig(id="deepseek-reasoner", supports_reasoning_trace=True),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "deepseek": DEEPSEEK_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
