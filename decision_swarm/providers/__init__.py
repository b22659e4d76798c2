"""Model provider registry."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    base_url: str
    api_key_env: str
    kind: str = "openai"  # "openai" (chat/completions) | "anthropic" (messages API)


_REGISTRY: dict[str, ProviderSpec] = {}


def register_provider(spec: ProviderSpec) -> None:
    _REGISTRY[spec.name] = spec


def get_provider(name: str) -> ProviderSpec:
    if name not in _REGISTRY:
        raise KeyError(f"Unknown provider: {name!r}. Available: {list(_REGISTRY.keys())}")
    return _REGISTRY[name]


def available_providers() -> list[str]:
    return list(_REGISTRY.keys())


for _spec in (
    ProviderSpec("siliconflow", "https://api.siliconflow.cn/v1", "SILICONFLOW_API_KEY"),
    ProviderSpec("deepseek", "https://api.deepseek.com/v1", "DEEPSEEK_API_KEY"),
    ProviderSpec("kimi", "https://api.moonshot.cn/v1", "KIMI_API_KEY"),
    ProviderSpec("zhipu", "https://open.bigmodel.cn/api/paas/v4", "ZHIPU_API_KEY"),
    ProviderSpec("aliyun", "https://dashscope.aliyuncs.com/compatible-mode/v1", "ALIYUN_API_KEY"),
    ProviderSpec("baidu", "https://qianfan.baidubce.com/v2", "BAIDU_API_KEY"),
    ProviderSpec("anthropic", "https://api.anthropic.com", "ANTHROPIC_API_KEY", kind="anthropic"),
):
    register_provider(_spec)
