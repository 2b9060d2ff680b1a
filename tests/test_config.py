#!/usr/bin/env python3
"""
配置加载测试
"""

import pytest

from agent_orchestrator import ConfigurationError, ModelConfig, infer_provider, load_model_config, resolve_model


@pytest.mark.parametrize(
    "model, provider",
    [
        ("gpt-4o", "openai"),
        ("claude-3-5-sonnet-latest", "anthropic"),
        ("claude-something-new", "anthropic"),
        ("gemini-2.5-flash", "google"),
        ("grok-3", "xai"),
        ("sonar-pro", "perplexity"),
        ("Qwen3-32B", "openai"),
    ],
)
def test_infer_provider(model, provider):
    assert infer_provider(model) == provider


def test_resolve_model_forms():
    config = ModelConfig(provider="openai", model="gpt-4")

    assert resolve_model(config) is config
    assert resolve_model("gpt-4").provider == "openai"
    assert resolve_model({"provider": "xai", "model": "grok-3"}).model == "grok-3"


def test_resolve_model_errors():
    with pytest.raises(ConfigurationError):
        resolve_model({"provider": "openai", "model": ""})
    with pytest.raises(ConfigurationError):
        resolve_model({"provider": "openai", "model": "gpt-4", "temperature": 5})
    with pytest.raises(ConfigurationError):
        resolve_model(42)


def test_load_from_env_mapping():
    env = {"OPENAI_API_KEY": "sk-env", "OPENAI_API_BASE": "http://localhost:8000/v1"}

    config = load_model_config("gpt-4o", env=env, temperature=0.2)

    assert config.provider == "openai"
    assert config.api_key == "sk-env"
    assert config.base_url == "http://localhost:8000/v1"
    assert config.temperature == 0.2
    assert "sk-env" not in repr(config)


def test_load_from_dotenv_file(tmp_path):
    """.env 中的值被读取，env 映射中的值优先"""
    dotenv_file = tmp_path / ".env"
    dotenv_file.write_text(
        "ANTHROPIC_API_KEY=ak-file\nOPENAI_API_KEY=sk-file\n", encoding="utf-8"
    )

    anthropic = load_model_config("claude-sonnet-4-20250514", env={}, dotenv_path=dotenv_file)
    openai = load_model_config(
        "gpt-4o", env={"OPENAI_API_KEY": "sk-env"}, dotenv_path=dotenv_file
    )

    assert anthropic.provider == "anthropic"
    assert anthropic.api_key == "ak-file"
    assert openai.api_key == "sk-env"


def test_load_without_credentials():
    config = load_model_config("my-model", provider="custom", env={}, base_url="http://local/v1")

    assert config.api_key is None
    assert config.base_url == "http://local/v1"
