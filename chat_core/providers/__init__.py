"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口与 httpx 公共实现 (base)。
- 维护 Provider 目录并把 provider id 解析为客户端 (registry)。
- 提供各厂商族的具体实现 (openai_client、anthropic_client、google_client)。
"""

from chat_core.providers.base import ProviderClient
from chat_core.providers.registry import (
    DEFAULT_PROVIDERS,
    ProviderDescriptor,
    ProviderFamily,
    ProviderRegistry,
)

__all__ = [
    "DEFAULT_PROVIDERS",
    "ProviderClient",
    "ProviderDescriptor",
    "ProviderFamily",
    "ProviderRegistry",
]
