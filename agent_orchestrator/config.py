"""
配置加载模块

编排器和适配器只接受显式传入的 ModelConfig，本模块负责把各种输入形式
统一成 ModelConfig，并提供一个显式的从环境变量 / .env 文件读取凭据的入口。

公开接口:
- infer_provider: 根据模型名推断提供方
- resolve_model: 把字符串 / 字典 / ModelConfig 统一为 ModelConfig
- load_model_config: 从环境变量映射或 .env 文件读取凭据并生成 ModelConfig
"""

import os
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import dotenv_values
from pydantic import ValidationError

from .cost import PROVIDER_CATALOG
from .exceptions import ConfigurationError
from .schemas import ModelConfig

API_KEY_ENV_VARS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_GENERATIVE_AI_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
    "xai": "XAI_API_KEY",
    "custom": "CUSTOM_API_KEY",
}

BASE_URL_ENV_VARS: Dict[str, str] = {
    "openai": "OPENAI_API_BASE",
    "custom": "CUSTOM_API_BASE",
}

_PREFIX_RULES = (
    ("gpt-", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("o4", "openai"),
    ("claude", "anthropic"),
    ("gemini", "google"),
    ("grok", "xai"),
    ("sonar", "perplexity"),
    ("llama-3.1-sonar", "perplexity"),
)


def infer_provider(model: str) -> str:
    """根据模型名推断提供方，无法判断时默认为 openai"""
    for provider, config in PROVIDER_CATALOG.items():
        if model in config["models"]:
            return provider
    lowered = model.lower()
    for prefix, provider in _PREFIX_RULES:
        if lowered.startswith(prefix):
            return provider
    return "openai"


def resolve_model(model: Union[str, ModelConfig, Mapping[str, Any]]) -> ModelConfig:
    """
    把模型描述统一为 ModelConfig

    Raises:
        ConfigurationError: 模型描述无效
    """
    if isinstance(model, ModelConfig):
        return model
    try:
        if isinstance(model, str):
            return ModelConfig(provider=infer_provider(model), model=model)
        if isinstance(model, Mapping):
            return ModelConfig.model_validate(dict(model))
    except ValidationError as e:
        raise ConfigurationError(f"模型配置无效: {e}") from e
    raise ConfigurationError(f"无效的模型描述: {model!r}")


def load_model_config(
    model: str,
    provider: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Union[str, os.PathLike]] = None,
    **overrides: Any,
) -> ModelConfig:
    """
    读取凭据并生成 ModelConfig

    .env 文件中的值先加载，env 映射（默认为 os.environ）中的值覆盖它们。
    .env 文件只被读取，不会写入进程环境变量。

    Args:
        model: 模型名称
        provider: 提供方，缺省时根据模型名推断
        env: 环境变量映射
        dotenv_path: 可选的 .env 文件路径
        overrides: 其他 ModelConfig 字段（temperature、max_tokens 等）

    Returns:
        ModelConfig: 模型配置
    """
    provider = provider or infer_provider(model)

    values: Dict[str, Optional[str]] = {}
    if dotenv_path is not None:
        values.update(dotenv_values(dotenv_path))
    values.update(os.environ if env is None else env)

    data: Dict[str, Any] = {"provider": provider, "model": model}
    key_var = API_KEY_ENV_VARS.get(provider)
    if key_var and values.get(key_var):
        data["api_key"] = values[key_var]
    url_var = BASE_URL_ENV_VARS.get(provider)
    if url_var and values.get(url_var):
        data["base_url"] = values[url_var]
    data.update(overrides)

    return resolve_model(data)
