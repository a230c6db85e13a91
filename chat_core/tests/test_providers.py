import pytest

from chat_core.domain.exceptions import ConfigError
from chat_core.providers import create_provider
from chat_core.providers.deepseek_client import DeepSeekClient
from chat_core.providers.registry import get_provider_config


def test_create_provider_default(monkeypatch):
    class DummySettings:
        default_provider = "deepseek"
        deepseek_api_key = "sk-0123456789"
        http_timeout = 1.0
        deepseek_base_url = "https://api.deepseek.com"

    monkeypatch.setattr("chat_core.providers.settings", DummySettings())
    provider = create_provider()
    assert isinstance(provider, DeepSeekClient)


def test_create_provider_missing_key(monkeypatch):
    class DummySettings:
        default_provider = "deepseek"
        deepseek_api_key = None
        http_timeout = 1.0
        deepseek_base_url = "https://api.deepseek.com"

    monkeypatch.setattr("chat_core.providers.settings", DummySettings())
    with pytest.raises(ConfigError) as exc:
        create_provider()
    assert exc.value.code == "MISSING_API_KEY"


def test_create_provider_unknown():
    with pytest.raises(ConfigError):
        create_provider("nope")


def test_registry_lookup_is_case_insensitive():
    cfg = get_provider_config("DeepSeek")
    assert cfg.models["reasoner"].supports_reasoning_trace
    assert not cfg.models["chat"].supports_reasoning_trace
    with pytest.raises(KeyError):
        get_provider_config("missing")
