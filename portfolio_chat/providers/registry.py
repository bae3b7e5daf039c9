"""Provider 与模型配置。

集中维护 completion 端点的默认值（基础 URL、默认模型、温度、token 上限、超时），
以及"哪些模型族要求使用 max_completion_tokens 而不是 max_tokens"这一规则。
上层只读取这里的默认值，具体数值可以被 settings 或单次调用覆盖。"""

from dataclasses import dataclass
from typing import Mapping, Tuple


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    default_model: str
    default_temperature: float
    default_max_tokens: int
    default_timeout_ms: int
    # 这些前缀的模型只接受 max_completion_tokens
    completion_token_prefixes: Tuple[str, ...] = ()


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    default_model="gpt-4o-mini",
    default_temperature=0.7,
    default_max_tokens=4096,
    default_timeout_ms=30000,
    completion_token_prefixes=("gpt-5", "o1", "o3"),
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def token_limit_param(model: str, cfg: ProviderConfig = OPENAI_CONFIG) -> str:
    """返回该模型在请求体中使用的 token 上限字段名。"""

    if model.startswith(cfg.completion_token_prefixes):
        return "max_completion_tokens"
    return "max_tokens"
